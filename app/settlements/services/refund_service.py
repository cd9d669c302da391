"""
Refund service: return escrowed funds to the buyer.

The gateway refund happens first; the REFUNDED transition and the refund
fields are written only after the gateway confirms. A failed refund
leaves the transaction exactly as it was.

The whole refund runs under the transaction's settlement lock, which an
escrow release also takes for its claim, so the release sweep cannot
complete a transaction while its refund is in flight.

Usage:
    from settlements.services import RefundService

    txn = RefundService.process_refund(
        txn.id,
        refund_amount=500,
        reason="Item damaged in transit",
        actor=request.user,
    )
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.utils import timezone

from core.services import BaseService
from settlements.alerts import raise_operator_alert
from settlements.exceptions import (
    GatewayError,
    GatewayInvalidRequestError,
    InvalidStateTransitionError,
    LockAcquisitionError,
    StaleRecordError,
    TransactionValidationError,
)
from settlements.gateways import IdempotencyKeyGenerator, call_with_retries, get_gateway
from settlements.ledger import TransactionLedger
from settlements.locks import transaction_lock
from settlements.services.transition_manager import TransitionManager
from settlements.state_machines import TransactionStatus

if TYPE_CHECKING:
    import uuid
    from datetime import datetime
    from typing import Any

    from settlements.models import Transaction

logger = logging.getLogger(__name__)

REFUNDABLE_STATUSES = frozenset(
    {TransactionStatus.HELD_IN_ESCROW, TransactionStatus.DISPUTED}
)


class RefundService(BaseService):
    """
    Issues refunds through the transaction's gateway.

    All methods are class methods - no instance state is maintained.
    """

    @classmethod
    def process_refund(
        cls,
        transaction_id: uuid.UUID | str,
        refund_amount: int | None = None,
        reason: str = "",
        actor=None,
        expected_version: int | None = None,
        changes: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> Transaction:
        """
        Refund the buyer and move the transaction to REFUNDED.

        Args:
            transaction_id: Transaction to refund
            refund_amount: Amount to return (defaults to amount_final);
                may not exceed total_amount
            reason: Refund reason, recorded on the transaction and timeline
            actor: User issuing the refund
            expected_version: Version the caller read; checked before any
                money moves
            changes: Extra fields written with the transition (e.g., a
                dispute resolution)
            now: Refund time (defaults to timezone.now())

        Returns:
            The refunded transaction

        Raises:
            InvalidStateTransitionError: Not held in escrow or disputed
            TransactionValidationError: Amount out of range
            StaleRecordError: Changed since expected_version
            LockAcquisitionError: Another settlement step holds the lock
            GatewayError: Gateway refund failed (status unchanged)
        """
        now = now or timezone.now()
        txn = TransactionLedger.get(transaction_id)

        try:
            with transaction_lock(txn.id):
                return cls._process_refund_with_lock(
                    txn.id,
                    refund_amount=refund_amount,
                    reason=reason,
                    actor=actor,
                    expected_version=expected_version,
                    changes=changes,
                    now=now,
                )
        except LockAcquisitionError as e:
            logger.warning(
                f"Failed to acquire settlement lock for refund of {txn.reference}",
                extra={"transaction_id": str(txn.id), "error": str(e)},
            )
            raise

    @classmethod
    def _process_refund_with_lock(
        cls,
        transaction_id: uuid.UUID,
        *,
        refund_amount: int | None,
        reason: str,
        actor,
        expected_version: int | None,
        changes: dict[str, Any] | None,
        now: datetime,
    ) -> Transaction:
        # Fresh read under the lock
        txn = TransactionLedger.get(transaction_id)

        if expected_version is not None and txn.version != expected_version:
            raise StaleRecordError(
                f"Transaction {txn.id} has been modified "
                f"(expected version {expected_version}, current {txn.version})",
                details={
                    "pk": str(txn.id),
                    "expected_version": expected_version,
                    "current_version": txn.version,
                },
            )
        if txn.status not in REFUNDABLE_STATUSES:
            raise InvalidStateTransitionError(
                f"Cannot refund a {txn.status} transaction",
                details={
                    "transaction_id": str(txn.id),
                    "current_status": txn.status,
                    "target_status": TransactionStatus.REFUNDED,
                },
            )

        amount = txn.amount_final if refund_amount is None else refund_amount
        cls._validate_amount(txn, amount)

        gateway_ref = txn.gateway_transaction_id or txn.gateway_order_id
        if not gateway_ref:
            raise GatewayInvalidRequestError(
                "Transaction has no gateway payment to refund",
                error_code="NO_GATEWAY_PAYMENT",
                gateway=txn.gateway,
                details={"transaction_id": str(txn.id)},
            )

        gateway = get_gateway(txn.gateway)
        try:
            refund = call_with_retries(
                gateway.refund,
                transaction_ref=gateway_ref,
                amount=amount,
                currency=txn.currency,
                idempotency_key=IdempotencyKeyGenerator.generate("refund", txn.id),
                reason=reason,
            )
        except GatewayError as e:
            logger.warning(
                f"Refund failed for {txn.reference}, status unchanged",
                extra={
                    "transaction_id": str(txn.id),
                    "error_code": e.error_code,
                    "retryable": e.is_retryable,
                },
            )
            raise

        try:
            refunded = TransitionManager.transition(
                txn.id,
                TransactionStatus.REFUNDED,
                actor=actor,
                note=f"Refund processed: {reason}",
                changes={
                    "refund_amount": amount,
                    "refund_reason": reason,
                    "refunded_by": actor,
                    "refund_gateway_reference": refund.id,
                    **(changes or {}),
                },
                now=now,
            )
        except (InvalidStateTransitionError, StaleRecordError) as e:
            raise_operator_alert(
                "REFUND_NOT_RECORDED",
                "Gateway refunded the buyer but the transaction could not be updated",
                transaction_id=txn.id,
                details={
                    "refund_id": refund.id,
                    "amount": amount,
                    "error_code": e.error_code,
                },
            )
            raise

        logger.info(
            f"Refunded {amount} {txn.currency} for {txn.reference}",
            extra={
                "transaction_id": str(txn.id),
                "refund_id": refund.id,
                "amount": amount,
            },
        )
        return refunded

    @staticmethod
    def _validate_amount(txn: Transaction, amount: Any) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise TransactionValidationError(
                "Refund amount must be a whole number of the smallest currency unit",
                error_code="INVALID_REFUND_AMOUNT",
                details={"refund_amount": str(amount)},
            )
        if amount <= 0 or amount > txn.total_amount:
            raise TransactionValidationError(
                f"Refund amount must be between 1 and {txn.total_amount}",
                error_code="INVALID_REFUND_AMOUNT",
                details={"refund_amount": amount, "total_amount": txn.total_amount},
            )


__all__ = [
    "RefundService",
]
