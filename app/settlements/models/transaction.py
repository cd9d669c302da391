"""
Transaction and TimelineEntry models for escrow settlement.

Transaction is the aggregate tracking a marketplace purchase from payment
initiation through escrow hold to release, refund or dispute resolution.
The escrow, dispute and refund sub-records are column groups on the same
row so that every change lands in one conditional UPDATE.

TimelineEntry is the append-only status history of a transaction.

Usage:
    from settlements.ledger import TransactionLedger
    from settlements.services import TransitionManager
    from settlements.state_machines import TransactionStatus

    # Rows are created and changed only through the ledger
    txn = TransactionLedger.create(
        buyer=buyer,
        listing=listing,
        amount_final=1000,
        payment_method="card",
    )

    # Status changes go through the transition manager
    TransitionManager.transition(txn.id, TransactionStatus.PROCESSING)
"""

from __future__ import annotations

import math
import secrets
import time
from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from settlements.exceptions import SettlementError
from settlements.fees import FeeBreakdown, compute_fees
from settlements.state_machines import (
    Currency,
    DisputeResolutionStatus,
    GatewayName,
    PaymentMethod,
    TransactionStatus,
)

# Timeline note written by every escrow release
ESCROW_RELEASED_NOTE = "Escrow released"


def generate_transaction_reference() -> str:
    """Human-readable reference: TXN_<epoch millis>_<8 upper-case hex>."""
    return f"TXN_{int(time.time() * 1000)}_{secrets.token_hex(4).upper()}"


def default_hold_period_days() -> int:
    """Escrow hold period for new transactions (ESCROW_DEFAULT_HOLD_PERIOD_DAYS)."""
    return getattr(settings, "ESCROW_DEFAULT_HOLD_PERIOD_DAYS", 7)


class Transaction(UUIDPrimaryKeyMixin, BaseModel):
    """
    Settlement aggregate for a single marketplace purchase.

    Uses django-fsm for the transition graph and a version column for
    optimistic concurrency. Rows are never updated through save():
    TransactionLedger.conditional_update() is the only write path after
    creation, and the transition methods below only compute in-memory
    changes that the manager then persists.

    State Flow:
        PENDING -> PROCESSING -> HELD_IN_ESCROW -> COMPLETED

    Dispute Flow:
        HELD_IN_ESCROW -> DISPUTED -> REFUNDED / COMPLETED / HELD_IN_ESCROW

    Cancellation Flow:
        PENDING/PROCESSING -> CANCELLED / FAILED

    Fields:
        reference: Human-readable unique reference (TXN_...)
        buyer/seller/listing: Parties and item, immutable after creation
        amount_original: Listing price at creation
        amount_final: Agreed price
        fee_*: Fee breakdown, always written together
        status: Current FSM state
        version: Optimistic locking version
        escrow_*: Escrow hold sub-record
        dispute_*: Dispute sub-record
        refund_*: Refund sub-record
        fulfillment: Opaque delivery data, passed through untouched
    """

    # ==========================================================================
    # Identity & Parties
    # ==========================================================================

    reference = models.CharField(
        max_length=40,
        unique=True,
        editable=False,
        default=generate_transaction_reference,
        help_text="Human-readable reference (TXN_<millis>_<hex>)",
    )

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="purchases",
        help_text="User paying for the item",
    )

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="sales",
        help_text="User receiving the funds on release",
    )

    listing = models.ForeignKey(
        "listings.Listing",
        on_delete=models.PROTECT,
        related_name="transactions",
        help_text="Listing being purchased",
    )

    # ==========================================================================
    # Amount, Fees & Payment Method
    # ==========================================================================

    amount_original = models.PositiveBigIntegerField(
        help_text="Listing price at creation, in smallest currency unit",
    )

    amount_final = models.PositiveBigIntegerField(
        help_text="Agreed price, in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        choices=Currency.choices,
        default=Currency.INR,
        help_text="ISO 4217 currency code",
    )

    fee_platform = models.PositiveBigIntegerField(
        default=0,
        editable=False,
        help_text="Platform commission in smallest currency unit",
    )

    fee_payment = models.PositiveBigIntegerField(
        default=0,
        editable=False,
        help_text="Payment processing fee in smallest currency unit",
    )

    fee_total = models.PositiveBigIntegerField(
        default=0,
        editable=False,
        help_text="fee_platform + fee_payment",
    )

    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.CARD,
        help_text="Method the buyer pays with",
    )

    payment_method_details = models.JSONField(
        default=dict,
        blank=True,
        help_text="Method details (last4, brand, bank, wallet, upi_id)",
    )

    # ==========================================================================
    # Gateway Linkage
    # ==========================================================================

    gateway = models.CharField(
        max_length=20,
        choices=GatewayName.choices,
        default=GatewayName.STRIPE,
        help_text="Payment gateway handling this transaction",
    )

    gateway_order_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway order / payment intent ID",
    )

    gateway_transaction_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway payment ID confirmed on capture",
    )

    # ==========================================================================
    # State & Concurrency Control
    # ==========================================================================

    status = FSMField(
        default=TransactionStatus.PENDING,
        choices=TransactionStatus.choices,
        db_index=True,
        protected=True,  # Prevent direct assignment outside transitions
        help_text="Current status of the transaction (managed by FSM)",
    )

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each write",
    )

    # ==========================================================================
    # Escrow Sub-record
    # ==========================================================================

    is_escrow = models.BooleanField(
        default=True,
        help_text="Whether funds are held in escrow before release",
    )

    escrow_hold_period_days = models.PositiveSmallIntegerField(
        default=default_hold_period_days,
        help_text="Days funds stay in escrow before auto-release",
    )

    escrow_release_date = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When funds become due for release (set on entering escrow)",
    )

    escrow_is_released = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether escrowed funds have been released",
    )

    escrow_released_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the escrow was released",
    )

    escrow_released_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="User who released the escrow (empty for automatic release)",
    )

    escrow_auto_release_enabled = models.BooleanField(
        default=True,
        help_text="Whether the release sweep may release this escrow",
    )

    escrow_payout_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Gateway payout ID for the disbursement to the seller",
    )

    escrow_disbursement_error = models.TextField(
        null=True,
        blank=True,
        help_text="Last disbursement failure after release, for operators",
    )

    # ==========================================================================
    # Dispute Sub-record
    # ==========================================================================

    is_disputed = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether an open dispute blocks automatic release",
    )

    dispute_initiated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Party who opened the dispute",
    )

    dispute_initiated_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the dispute was opened",
    )

    dispute_reason = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Short dispute reason",
    )

    dispute_description = models.TextField(
        blank=True,
        default="",
        help_text="Detailed description of the dispute",
    )

    dispute_evidence = models.JSONField(
        default=list,
        blank=True,
        help_text="Evidence items: [{type, url, uploaded_at}]",
    )

    dispute_resolution_status = models.CharField(
        max_length=20,
        choices=DisputeResolutionStatus.choices,
        null=True,
        blank=True,
        help_text="Resolution state of the dispute",
    )

    dispute_resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Staff member who resolved the dispute",
    )

    dispute_resolved_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the dispute was resolved",
    )

    dispute_resolution = models.TextField(
        blank=True,
        default="",
        help_text="Resolution decision text",
    )

    dispute_refund_amount = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Refund granted by the resolution, if any",
    )

    # ==========================================================================
    # Refund Sub-record
    # ==========================================================================

    is_refunded = models.BooleanField(
        default=False,
        help_text="Whether the buyer has been refunded",
    )

    refund_amount = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Refunded amount in smallest currency unit",
    )

    refund_reason = models.TextField(
        blank=True,
        default="",
        help_text="Reason given for the refund",
    )

    refunded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the refund was processed",
    )

    refunded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="User who processed the refund",
    )

    refund_gateway_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Gateway refund ID",
    )

    # ==========================================================================
    # Fulfillment, Notes & Metadata
    # ==========================================================================

    fulfillment = models.JSONField(
        default=dict,
        blank=True,
        help_text="Delivery details, stored as given",
    )

    notes = models.TextField(
        blank=True,
        default="",
        help_text="Notes visible to both parties",
    )

    internal_notes = models.TextField(
        blank=True,
        default="",
        help_text="Staff-only notes",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Transaction"
        verbose_name_plural = "Transactions"
        indexes = [
            models.Index(
                fields=["status", "escrow_release_date"],
                name="txn_status_release_idx",
            ),
            models.Index(fields=["buyer", "status"], name="txn_buyer_status_idx"),
            models.Index(fields=["seller", "status"], name="txn_seller_status_idx"),
            models.Index(fields=["seller", "created_at"], name="txn_seller_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(
                    fee_total=models.F("fee_platform") + models.F("fee_payment")
                ),
                name="txn_fee_total_consistent",
            ),
            models.CheckConstraint(
                condition=~models.Q(buyer=models.F("seller")),
                name="txn_buyer_not_seller",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with reference, status, and amount."""
        amount_display = f"{self.amount_final / 100:.2f} {self.currency}"
        return f"Transaction({self.reference}, {self.status}, {amount_display})"

    def save(self, *args, **kwargs):
        """
        Insert a new transaction.

        Existing rows are only changed through conditional writes, so an
        update through save() is refused.
        """
        if not self._state.adding:
            raise SettlementError(
                "Transactions are updated through TransactionLedger.conditional_update",
                error_code="TRANSACTION_SAVE_NOT_ALLOWED",
                details={"transaction_id": str(self.pk)},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        """Transactions are retained forever."""
        raise SettlementError(
            "Transactions cannot be deleted",
            error_code="TRANSACTION_DELETE_NOT_ALLOWED",
            details={"transaction_id": str(self.pk)},
        )

    # ==========================================================================
    # Derived Values
    # ==========================================================================

    @property
    def fees(self) -> FeeBreakdown:
        return FeeBreakdown(
            platform=self.fee_platform,
            payment=self.fee_payment,
            total=self.fee_total,
        )

    def apply_fees(self) -> FeeBreakdown:
        """
        Recompute fees from amount_final and payment_method in memory.

        Note:
            This method does not save - the caller persists the fee
            fields together with the amount or method change.
        """
        fees = compute_fees(self.amount_final, self.payment_method)
        for name, value in fees.as_model_fields().items():
            setattr(self, name, value)
        return fees

    @property
    def total_amount(self) -> int:
        """Amount charged to the buyer: agreed price plus fees."""
        return self.amount_final + self.fee_total

    @property
    def escrow_days_remaining(self) -> int:
        """Whole days until release (rounded up), never negative."""
        if not self.escrow_release_date:
            return 0
        remaining = self.escrow_release_date - timezone.now()
        return max(0, math.ceil(remaining.total_seconds() / 86400))

    @property
    def is_due_for_release(self) -> bool:
        """In-memory mirror of the release sweep's eligibility filter."""
        return (
            self.status == TransactionStatus.HELD_IN_ESCROW
            and self.escrow_auto_release_enabled
            and self.escrow_release_date is not None
            and self.escrow_release_date <= timezone.now()
            and not self.escrow_is_released
            and not self.is_disputed
        )

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=TransactionStatus.PENDING,
        target=TransactionStatus.PROCESSING,
    )
    def process(self, now=None):
        """
        Payment has been initiated with the gateway.

        Transition: PENDING -> PROCESSING
        """

    @transition(
        field=status,
        source=[TransactionStatus.PROCESSING, TransactionStatus.DISPUTED],
        target=TransactionStatus.HELD_IN_ESCROW,
    )
    def hold(self, now=None, reset_release_date=False):
        """
        Place funds in escrow.

        Transition: PROCESSING/DISPUTED -> HELD_IN_ESCROW

        The release date is computed once, on first entry. Returning from
        a dispute keeps the original date unless reset_release_date is set.
        """
        now = now or timezone.now()
        if self.escrow_release_date is None or reset_release_date:
            self.escrow_release_date = now + timedelta(
                days=self.escrow_hold_period_days
            )

    @transition(
        field=status,
        source=[TransactionStatus.HELD_IN_ESCROW, TransactionStatus.DISPUTED],
        target=TransactionStatus.COMPLETED,
    )
    def complete(self, now=None):
        """
        Settle the transaction in the seller's favour.

        Transition: HELD_IN_ESCROW/DISPUTED -> COMPLETED

        Release flags are supplied by the caller in the same write.
        """

    @transition(
        field=status,
        source=TransactionStatus.HELD_IN_ESCROW,
        target=TransactionStatus.DISPUTED,
    )
    def dispute(self, now=None):
        """
        Open a dispute, blocking automatic release.

        Transition: HELD_IN_ESCROW -> DISPUTED

        A reinstated transaction can be disputed again, so the outcome of
        any earlier dispute is cleared. Evidence and description come from
        the caller's changes.
        """
        self.is_disputed = True
        self.dispute_initiated_at = now or timezone.now()
        self.dispute_resolution_status = DisputeResolutionStatus.PENDING
        self.dispute_resolved_by = None
        self.dispute_resolved_at = None
        self.dispute_resolution = ""
        self.dispute_refund_amount = None

    @transition(
        field=status,
        source=[TransactionStatus.HELD_IN_ESCROW, TransactionStatus.DISPUTED],
        target=TransactionStatus.REFUNDED,
    )
    def refund(self, now=None):
        """
        Return funds to the buyer.

        Transition: HELD_IN_ESCROW/DISPUTED -> REFUNDED
        """
        self.is_refunded = True
        self.refunded_at = now or timezone.now()

    @transition(
        field=status,
        source=[TransactionStatus.PENDING, TransactionStatus.PROCESSING],
        target=TransactionStatus.FAILED,
    )
    def fail(self, now=None):
        """
        Payment failed at the gateway.

        Transition: PENDING/PROCESSING -> FAILED
        """

    @transition(
        field=status,
        source=[TransactionStatus.PENDING, TransactionStatus.PROCESSING],
        target=TransactionStatus.CANCELLED,
    )
    def cancel(self, now=None):
        """
        Abandon the purchase before funds are held.

        Transition: PENDING/PROCESSING -> CANCELLED
        """


class TimelineEntry(models.Model):
    """
    One status change in a transaction's history.

    Entries are inserted in the same database transaction as the status
    write they describe and are never updated or deleted. Ordering is by
    (timestamp, id) so entries written in the same instant keep their
    insertion order.
    """

    transaction = models.ForeignKey(
        Transaction,
        on_delete=models.PROTECT,
        related_name="timeline",
        help_text="Transaction this entry belongs to",
    )

    status = models.CharField(
        max_length=20,
        choices=TransactionStatus.choices,
        help_text="Status entered",
    )

    timestamp = models.DateTimeField(
        db_index=True,
        help_text="When the status was entered",
    )

    note = models.TextField(
        blank=True,
        default="",
        help_text="Human-readable note",
    )

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="User who caused the change (empty for system actions)",
    )

    class Meta:
        ordering = ["timestamp", "id"]
        verbose_name = "Timeline Entry"
        verbose_name_plural = "Timeline Entries"
        indexes = [
            models.Index(
                fields=["transaction", "timestamp"],
                name="timeline_txn_timestamp_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"TimelineEntry({self.transaction_id}, {self.status}, {self.timestamp})"

    def save(self, *args, **kwargs):
        """Append only: existing entries cannot be changed."""
        if not self._state.adding:
            raise SettlementError(
                "Timeline entries are append-only",
                error_code="TIMELINE_IMMUTABLE",
                details={"entry_id": self.pk},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise SettlementError(
            "Timeline entries are append-only",
            error_code="TIMELINE_IMMUTABLE",
            details={"entry_id": self.pk},
        )
