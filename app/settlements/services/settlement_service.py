"""
Settlement service: transaction creation and the payment leg.

Covers everything before funds are held in escrow:
- create_transaction: validated creation with fees
- update_terms: renegotiate price or payment method while pending
- start_payment: create the gateway charge (PENDING -> PROCESSING)
- confirm_payment: gateway confirmed capture (PROCESSING -> HELD_IN_ESCROW)
- fail_payment / cancel_transaction: abandon before escrow
- seller_stats: per-status counts and amounts for a seller

Usage:
    from settlements.services import SettlementService

    txn = SettlementService.create_transaction(
        buyer=request.user,
        listing_id=listing.id,
        amount_final=1000,
        payment_method="card",
    )
    txn, charge = SettlementService.start_payment(txn.id, actor=request.user)
    # ... buyer confirms the charge client-side ...
    txn = SettlementService.confirm_payment(txn.id, gateway_transaction_id="pi_123")
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from django.db.models import Count, Q, Sum
from django.utils import timezone

from core.exceptions import PermissionDeniedError
from core.services import BaseService
from settlements.exceptions import (
    GatewayError,
    InvalidStateTransitionError,
    TransactionValidationError,
)
from settlements.fees import compute_fees
from settlements.gateways import IdempotencyKeyGenerator, call_with_retries, get_gateway
from settlements.ledger import TransactionLedger
from settlements.models import Transaction
from settlements.services.transition_manager import TransitionManager
from settlements.state_machines import PaymentMethod, TransactionStatus

if TYPE_CHECKING:
    import uuid
    from typing import Any

    from settlements.gateways import ChargeResult


class SettlementService(BaseService):
    """
    Service for the pre-escrow part of a transaction's life.

    All methods are class methods - no instance state is maintained.
    """

    # =========================================================================
    # Creation and Reads
    # =========================================================================

    @classmethod
    def create_transaction(
        cls,
        *,
        buyer,
        listing_id,
        amount_final: int | None = None,
        payment_method: str | None = None,
        seller=None,
        **extra: Any,
    ) -> Transaction:
        """
        Create a pending transaction.

        Thin wrapper over TransactionLedger.create(); see it for the
        validation rules. Extra keyword arguments (currency, gateway,
        fulfillment, notes, ...) are passed through.
        """
        return TransactionLedger.create(
            buyer=buyer,
            listing=listing_id,
            amount_final=amount_final,
            payment_method=payment_method,
            seller=seller,
            **extra,
        )

    @classmethod
    def get_transaction(cls, transaction_id: uuid.UUID | str) -> Transaction:
        return TransactionLedger.get(transaction_id)

    @classmethod
    def transactions_for_user(cls, user):
        """Transactions where the user is buyer or seller, newest first."""
        return Transaction.objects.filter(Q(buyer=user) | Q(seller=user)).select_related(
            "listing"
        )

    # =========================================================================
    # Renegotiation
    # =========================================================================

    @classmethod
    def update_terms(
        cls,
        transaction_id: uuid.UUID | str,
        *,
        actor,
        expected_version: int,
        amount_final: int | None = None,
        payment_method: str | None = None,
    ) -> Transaction:
        """
        Change the agreed price or payment method of a pending transaction.

        Fees are recomputed and written in the same update as the change.

        Raises:
            InvalidStateTransitionError: Transaction is no longer pending
            PermissionDeniedError: Actor is not a party
            StaleRecordError: Transaction changed since expected_version
        """
        txn = TransactionLedger.get(transaction_id)
        cls._require_party(txn, actor)
        if txn.status != TransactionStatus.PENDING:
            raise InvalidStateTransitionError(
                "Terms can only change while the transaction is pending",
                error_code="TERMS_LOCKED",
                details={"transaction_id": str(txn.id), "current_status": txn.status},
            )

        if payment_method is not None and payment_method not in PaymentMethod.values:
            raise TransactionValidationError(
                f"Unsupported payment method: {payment_method}",
                error_code="INVALID_PAYMENT_METHOD",
                details={"payment_method": payment_method},
            )

        new_amount = txn.amount_final if amount_final is None else amount_final
        new_method = payment_method or txn.payment_method
        if isinstance(new_amount, bool) or not isinstance(new_amount, int):
            raise TransactionValidationError(
                "Amount must be a whole number of the smallest currency unit",
                error_code="INVALID_AMOUNT",
                details={"amount": str(new_amount)},
            )
        fees = compute_fees(new_amount, new_method)

        TransactionLedger.conditional_update(
            txn.id,
            expected_version=expected_version,
            fields={
                "amount_final": new_amount,
                "payment_method": new_method,
                **fees.as_model_fields(),
            },
            expected_status=TransactionStatus.PENDING,
        )
        cls.get_logger().info(
            f"Updated terms for transaction {txn.reference}",
            extra={
                "transaction_id": str(txn.id),
                "amount_final": new_amount,
                "payment_method": new_method,
                "fee_total": fees.total,
            },
        )
        return TransactionLedger.get(txn.id)

    # =========================================================================
    # Payment Leg
    # =========================================================================

    @classmethod
    def start_payment(
        cls,
        transaction_id: uuid.UUID | str,
        *,
        actor=None,
    ) -> tuple[Transaction, ChargeResult]:
        """
        Create the gateway charge and move PENDING -> PROCESSING.

        The buyer is charged total_amount (agreed price plus fees). A
        declined or invalid charge moves the transaction to FAILED;
        transient gateway errors leave it PENDING for a later retry.

        Returns:
            Tuple of (updated transaction, ChargeResult with client secret)
        """
        txn = TransactionLedger.get(transaction_id)
        if actor is not None and actor.pk != txn.buyer_id:
            raise PermissionDeniedError(
                "Only the buyer can pay for this transaction",
                details={"transaction_id": str(txn.id)},
            )
        if txn.status != TransactionStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Cannot start payment for a {txn.status} transaction",
                details={
                    "transaction_id": str(txn.id),
                    "current_status": txn.status,
                    "target_status": TransactionStatus.PROCESSING,
                },
            )

        gateway = get_gateway(txn.gateway)
        try:
            charge = call_with_retries(
                gateway.charge,
                transaction_ref=txn.reference,
                amount=txn.total_amount,
                currency=txn.currency,
                payment_method=txn.payment_method,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "charge", txn.id, version=txn.version
                ),
            )
        except GatewayError as e:
            if not e.is_retryable:
                TransitionManager.transition(
                    txn.id,
                    TransactionStatus.FAILED,
                    actor=actor,
                    note=f"Payment could not be started: {e.message}",
                )
            raise

        txn = TransitionManager.transition(
            txn.id,
            TransactionStatus.PROCESSING,
            actor=actor,
            note="Payment initiated",
            changes={"gateway_order_id": charge.order_id},
        )
        return txn, charge

    @classmethod
    def confirm_payment(
        cls,
        transaction_id: uuid.UUID | str,
        *,
        gateway_transaction_id: str,
        payment_method_details: dict | None = None,
        actor=None,
    ) -> Transaction:
        """
        Record a confirmed capture and hold the funds in escrow.

        Transition: PROCESSING -> HELD_IN_ESCROW. The release date is set
        to now + escrow_hold_period_days.
        """
        if not gateway_transaction_id:
            raise TransactionValidationError(
                "gateway_transaction_id is required",
                error_code="MISSING_GATEWAY_TRANSACTION_ID",
            )
        txn = TransactionLedger.get(transaction_id)
        changes: dict[str, Any] = {"gateway_transaction_id": gateway_transaction_id}
        if payment_method_details is not None:
            changes["payment_method_details"] = payment_method_details

        return TransitionManager.transition(
            txn.id,
            TransactionStatus.HELD_IN_ESCROW,
            actor=actor,
            note=f"Payment held in escrow for {txn.escrow_hold_period_days} days",
            changes=changes,
        )

    @classmethod
    def fail_payment(
        cls,
        transaction_id: uuid.UUID | str,
        *,
        reason: str = "",
        actor=None,
    ) -> Transaction:
        """Transition: PENDING/PROCESSING -> FAILED."""
        return TransitionManager.transition(
            transaction_id,
            TransactionStatus.FAILED,
            actor=actor,
            note=f"Payment failed: {reason}" if reason else "Payment failed",
        )

    @classmethod
    def cancel_transaction(
        cls,
        transaction_id: uuid.UUID | str,
        *,
        actor,
        reason: str = "",
        expected_version: int | None = None,
    ) -> Transaction:
        """
        Abandon the purchase before funds are held.

        Transition: PENDING/PROCESSING -> CANCELLED. Parties and staff only.
        """
        txn = TransactionLedger.get(transaction_id)
        cls._require_party(txn, actor)
        return TransitionManager.transition(
            txn.id,
            TransactionStatus.CANCELLED,
            actor=actor,
            note=f"Cancelled: {reason}" if reason else "Cancelled",
            expected_version=expected_version,
        )

    # =========================================================================
    # Statistics
    # =========================================================================

    @classmethod
    def seller_stats(cls, seller, period_days: int = 30) -> dict[str, Any]:
        """
        Per-status count and amount for a seller's recent transactions.

        Args:
            seller: Seller user
            period_days: Look-back window in days (default: 30)

        Returns:
            {"period_days": 30, "by_status": {status: {"count", "total_amount"}},
             "total_count": n, "total_amount": n}
        """
        if period_days <= 0:
            raise TransactionValidationError(
                "period_days must be positive",
                error_code="INVALID_PERIOD",
                details={"period_days": period_days},
            )
        since = timezone.now() - timedelta(days=period_days)
        rows = (
            Transaction.objects.filter(seller=seller, created_at__gte=since)
            .values("status")
            .annotate(count=Count("id"), total_amount=Sum("amount_final"))
            .order_by("status")
        )
        by_status = {
            row["status"]: {"count": row["count"], "total_amount": row["total_amount"] or 0}
            for row in rows
        }
        return {
            "period_days": period_days,
            "by_status": by_status,
            "total_count": sum(s["count"] for s in by_status.values()),
            "total_amount": sum(s["total_amount"] for s in by_status.values()),
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _require_party(txn: Transaction, actor) -> None:
        if actor is None or getattr(actor, "is_staff", False):
            return
        if actor.pk not in (txn.buyer_id, txn.seller_id):
            raise PermissionDeniedError(
                "Only the buyer or seller can act on this transaction",
                details={"transaction_id": str(txn.id)},
            )


__all__ = [
    "SettlementService",
]
