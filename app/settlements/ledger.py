"""
Transaction ledger: the only write path for settlement rows.

Transactions are created once through create() and afterwards changed
only through conditional_update(), which applies an UPDATE guarded by
the version the caller read:

    UPDATE settlements_transaction
       SET ..., version = version + 1
     WHERE id = %s AND version = %s

Zero matched rows means either the record is gone or another writer got
there first. The two cases raise different exceptions so callers can
decide whether to re-read and retry.

Usage:
    from settlements.ledger import TimelineRecord, TransactionLedger

    txn = TransactionLedger.create(
        buyer=buyer,
        listing=listing,
        amount_final=1000,
        payment_method="card",
    )

    txn = TransactionLedger.conditional_update(
        txn.id,
        expected_version=txn.version,
        fields={"notes": "Left at the door"},
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction as db_transaction
from django.db.models import F
from django.utils import timezone

from settlements.directories import ListingDirectory, UserDirectory
from settlements.exceptions import (
    TransactionNotFoundError,
    TransactionValidationError,
)
from settlements.fees import compute_fees
from settlements.locks import raise_for_missed_write
from settlements.models import TimelineEntry, Transaction
from settlements.state_machines import (
    Currency,
    GatewayName,
    PaymentMethod,
    TransactionStatus,
)

if TYPE_CHECKING:
    import uuid
    from datetime import datetime
    from typing import Any

logger = logging.getLogger(__name__)

# Fields a conditional update may never set directly
PROTECTED_FIELDS = frozenset({"id", "version", "reference", "created_at", "updated_at"})

# Parties and item are fixed at creation
IMMUTABLE_FIELDS = frozenset(
    {"buyer", "buyer_id", "seller", "seller_id", "listing", "listing_id"}
)


@dataclass(frozen=True)
class TimelineRecord:
    """
    Timeline entry to insert together with a conditional update.

    Attributes:
        status: Status entered
        note: Human-readable note
        actor: User who caused the change (None for system actions)
        timestamp: When the status was entered (defaults to the write time)
    """

    status: str
    note: str = ""
    actor: Any = None
    timestamp: datetime | None = None


class TransactionLedger:
    """
    Versioned persistence for Transaction rows.

    All methods are static - no instance state is maintained.
    """

    @staticmethod
    def create(
        *,
        buyer,
        listing,
        amount_final: int | None = None,
        payment_method: str | None = None,
        seller=None,
        currency: str | None = None,
        gateway: str | None = None,
        payment_method_details: dict | None = None,
        hold_period_days: int | None = None,
        fulfillment: dict | None = None,
        notes: str = "",
        metadata: dict | None = None,
        actor=None,
    ) -> Transaction:
        """
        Create a pending transaction with its initial timeline entry.

        The seller is taken from the listing. When a seller is passed it
        must match the listing's seller.

        Args:
            buyer: User paying for the item
            listing: Listing instance or id, resolved through ListingDirectory
            amount_final: Agreed price (defaults to the listing price)
            payment_method: Payment method (defaults to card)
            seller: Optional explicit seller, checked against the listing
            currency: ISO 4217 code (defaults to the listing currency)
            gateway: Gateway name (defaults to SETTLEMENTS_DEFAULT_GATEWAY)
            hold_period_days: Escrow hold period override
            actor: User recorded on the creation timeline entry

        Returns:
            The created Transaction

        Raises:
            TransactionValidationError: If any input is invalid
        """
        buyer_id = getattr(buyer, "pk", buyer)
        if not UserDirectory.exists(buyer_id):
            raise TransactionValidationError(
                "Buyer not found",
                error_code="BUYER_NOT_FOUND",
                details={"buyer_id": str(buyer_id)},
            )

        resolved = ListingDirectory.resolve(listing)
        if resolved is None:
            raise TransactionValidationError(
                "Listing not found",
                error_code="LISTING_NOT_FOUND",
                details={"listing_id": str(getattr(listing, "pk", listing))},
            )
        if not ListingDirectory.is_purchasable(resolved):
            raise TransactionValidationError(
                "Listing is not available for purchase",
                error_code="LISTING_NOT_PURCHASABLE",
                details={
                    "listing_id": str(resolved.pk),
                    "status": resolved.status,
                    "availability": resolved.availability,
                },
            )

        listing_seller_id = resolved.seller_id
        if seller is not None and getattr(seller, "pk", seller) != listing_seller_id:
            raise TransactionValidationError(
                "Seller does not own this listing",
                error_code="SELLER_MISMATCH",
                details={"listing_id": str(resolved.pk)},
            )
        if buyer_id == listing_seller_id:
            raise TransactionValidationError(
                "Buyer and seller must be different users",
                error_code="BUYER_IS_SELLER",
                details={"listing_id": str(resolved.pk)},
            )

        if amount_final is None:
            amount_final = resolved.price_amount
        method = payment_method or PaymentMethod.CARD
        if method not in PaymentMethod.values:
            raise TransactionValidationError(
                f"Unsupported payment method: {method}",
                error_code="INVALID_PAYMENT_METHOD",
                details={"payment_method": method},
            )
        # Validates the amount as well
        fees = compute_fees(amount_final, method)
        if not isinstance(amount_final, int):
            raise TransactionValidationError(
                "Amount must be a whole number of the smallest currency unit",
                error_code="INVALID_AMOUNT",
                details={"amount": str(amount_final)},
            )

        currency = (currency or resolved.currency).upper()
        if currency not in Currency.values:
            raise TransactionValidationError(
                f"Unsupported currency: {currency}",
                error_code="INVALID_CURRENCY",
                details={"currency": currency},
            )

        gateway = gateway or getattr(
            settings, "SETTLEMENTS_DEFAULT_GATEWAY", GatewayName.STRIPE
        )
        if gateway not in GatewayName.values:
            raise TransactionValidationError(
                f"Unsupported gateway: {gateway}",
                error_code="INVALID_GATEWAY",
                details={"gateway": gateway},
            )

        txn = Transaction(
            buyer_id=buyer_id,
            seller_id=listing_seller_id,
            listing=resolved,
            amount_original=resolved.price_amount,
            amount_final=amount_final,
            currency=currency,
            payment_method=method,
            payment_method_details=payment_method_details or {},
            gateway=gateway,
            fulfillment=fulfillment or {},
            notes=notes,
            metadata=metadata or {},
            **fees.as_model_fields(),
        )
        if hold_period_days is not None:
            if hold_period_days < 0:
                raise TransactionValidationError(
                    "Hold period cannot be negative",
                    error_code="INVALID_HOLD_PERIOD",
                    details={"hold_period_days": hold_period_days},
                )
            txn.escrow_hold_period_days = hold_period_days

        with db_transaction.atomic():
            txn.save()
            TimelineEntry.objects.create(
                transaction=txn,
                status=TransactionStatus.PENDING,
                timestamp=txn.created_at,
                note="Transaction created",
                actor_id=getattr(actor, "pk", actor) if actor is not None else buyer_id,
            )

        logger.info(
            f"Created transaction {txn.reference}",
            extra={
                "transaction_id": str(txn.id),
                "listing_id": str(resolved.pk),
                "amount_final": txn.amount_final,
                "fee_total": txn.fee_total,
            },
        )
        return txn

    @staticmethod
    def get(transaction_id: uuid.UUID | str) -> Transaction:
        """
        Fresh read of a transaction.

        Raises:
            TransactionNotFoundError: If it doesn't exist
        """
        try:
            return Transaction.objects.get(pk=transaction_id)
        except (Transaction.DoesNotExist, DjangoValidationError, ValueError):
            raise TransactionNotFoundError(
                f"Transaction {transaction_id} not found",
                details={"transaction_id": str(transaction_id)},
            )

    @staticmethod
    def conditional_update(
        transaction_id: uuid.UUID | str,
        expected_version: int,
        fields: dict[str, Any],
        timeline_entry: TimelineRecord | None = None,
        expected_status: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """
        Apply fields if the row is still at expected_version.

        Increments version and inserts the optional timeline entry in the
        same database transaction.

        Args:
            transaction_id: Transaction primary key
            expected_version: Version the caller read
            fields: Column values to write (model attnames or field names)
            timeline_entry: Optional entry inserted with the write
            expected_status: Optional extra guard on the current status
            now: Write time (defaults to timezone.now())

        Returns:
            The new version

        Raises:
            StaleRecordError: If the row exists at another version
            TransactionNotFoundError: If the row doesn't exist
            TransactionValidationError: If a protected field is included
        """
        forbidden = (PROTECTED_FIELDS | IMMUTABLE_FIELDS) & set(fields)
        if forbidden:
            raise TransactionValidationError(
                "Fields cannot be changed through a conditional update",
                error_code="FIELD_NOT_WRITABLE",
                details={"fields": sorted(forbidden)},
            )

        now = now or timezone.now()
        filters: dict[str, Any] = {"pk": transaction_id, "version": expected_version}
        if expected_status is not None:
            filters["status"] = expected_status

        with db_transaction.atomic():
            updated = Transaction.objects.filter(**filters).update(
                **fields,
                version=F("version") + 1,
                updated_at=now,
            )
            if not updated:
                raise_for_missed_write(Transaction, transaction_id, expected_version)

            if timeline_entry is not None:
                TimelineEntry.objects.create(
                    transaction_id=transaction_id,
                    status=timeline_entry.status,
                    timestamp=timeline_entry.timestamp or now,
                    note=timeline_entry.note,
                    actor=timeline_entry.actor,
                )

        logger.debug(
            f"Conditional update applied to transaction {transaction_id}",
            extra={
                "transaction_id": str(transaction_id),
                "version": expected_version + 1,
                "fields": sorted(fields),
            },
        )
        return expected_version + 1

    @staticmethod
    def timeline(transaction_id: uuid.UUID | str):
        """Timeline entries in insertion order."""
        return TimelineEntry.objects.filter(transaction_id=transaction_id).select_related(
            "actor"
        )


__all__ = [
    "TimelineRecord",
    "TransactionLedger",
]
