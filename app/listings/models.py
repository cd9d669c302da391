"""
Listing model for marketplace items.

Only the parts of a listing the settlement engine needs live here:
the seller, the asking price and whether the item can still be bought.
Search, media and promotion data belong to the listing service.

Usage:
    from listings.models import Listing, ListingStatus

    listing = Listing.objects.create(
        seller=user,
        title="Road bike",
        price_amount=250000,
        currency="INR",
    )
    listing.is_purchasable  # True for active, available listings
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class ListingStatus(models.TextChoices):
    """Publication status of a listing."""

    DRAFT = "draft", "Draft"
    ACTIVE = "active", "Active"
    SOLD = "sold", "Sold"
    EXPIRED = "expired", "Expired"
    DELETED = "deleted", "Deleted"
    SUSPENDED = "suspended", "Suspended"


class ListingAvailability(models.TextChoices):
    """Stock availability of a listing."""

    AVAILABLE = "available", "Available"
    RESERVED = "reserved", "Reserved"
    SOLD = "sold", "Sold"


class Listing(UUIDPrimaryKeyMixin, BaseModel):
    """
    An item offered for sale by a seller.

    Fields:
        seller: User offering the item
        title: Short item title
        price_amount: Asking price in smallest currency unit
        currency: ISO 4217 currency code
        status: Publication status
        availability: Stock availability
    """

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="listings",
        help_text="User offering the item",
    )

    title = models.CharField(
        max_length=200,
        help_text="Short item title",
    )

    price_amount = models.PositiveBigIntegerField(
        help_text="Asking price in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="INR",
        help_text="ISO 4217 currency code (uppercase)",
    )

    status = models.CharField(
        max_length=20,
        choices=ListingStatus.choices,
        default=ListingStatus.ACTIVE,
        db_index=True,
        help_text="Publication status",
    )

    availability = models.CharField(
        max_length=20,
        choices=ListingAvailability.choices,
        default=ListingAvailability.AVAILABLE,
        help_text="Stock availability",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Listing"
        verbose_name_plural = "Listings"
        indexes = [
            models.Index(fields=["seller", "status"], name="listing_seller_status_idx"),
        ]

    def __str__(self) -> str:
        return f"Listing({self.id}, {self.title})"

    @property
    def is_purchasable(self) -> bool:
        """Active listings that are not reserved or sold can be bought."""
        return (
            self.status == ListingStatus.ACTIVE
            and self.availability == ListingAvailability.AVAILABLE
        )
