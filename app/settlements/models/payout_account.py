"""
PayoutAccount model linking sellers to their gateway payout destination.

A seller needs a payout account before escrowed funds can be disbursed
to them. The account reference is the gateway's identifier for the
destination (for Stripe, a Connect account ID).

Usage:
    from settlements.models import PayoutAccount

    PayoutAccount.objects.create(
        user=seller,
        gateway="stripe",
        account_reference="acct_1Hh1XYZ",
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from settlements.state_machines import GatewayName


class PayoutAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    Gateway destination that receives a seller's released funds.

    Fields:
        user: Seller owning the account
        gateway: Gateway the account lives on
        account_reference: Gateway-side account ID
        payouts_enabled: Whether the gateway accepts payouts to it
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payout_account",
        help_text="Seller owning this payout account",
    )

    gateway = models.CharField(
        max_length=20,
        choices=GatewayName.choices,
        default=GatewayName.STRIPE,
        help_text="Gateway the account lives on",
    )

    account_reference = models.CharField(
        max_length=255,
        unique=True,
        help_text="Gateway-side account ID (e.g., acct_xxx)",
    )

    payouts_enabled = models.BooleanField(
        default=True,
        help_text="Whether the gateway accepts payouts to this account",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout Account"
        verbose_name_plural = "Payout Accounts"

    def __str__(self) -> str:
        return f"PayoutAccount({self.user_id}, {self.gateway}, {self.account_reference})"
