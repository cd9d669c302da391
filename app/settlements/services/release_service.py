"""
Escrow release: sweep, manual release and seller disbursement.

Every release goes through one claim: a HELD_IN_ESCROW (or DISPUTED)
-> COMPLETED transition at the version the caller read, setting the
release flags in the same write. Only the caller whose claim succeeds
queues the payout, so concurrent releasers (two sweeps, a sweep and an
admin) can never pay the seller twice. The claim holds the
transaction's settlement lock, which a refund holds across its gateway
call, so a release never lands while a refund is in flight.

Disbursement runs in a Celery task after the claim has committed. It
makes one gateway attempt per run and Celery retries transient
failures with backoff. If it finally fails the transaction stays
COMPLETED; the error is recorded on the transaction and an operator
alert is raised. Every attempt uses the same idempotency key.

Usage:
    from settlements.services import EscrowReleaseService

    # Periodic sweep (normally via Celery beat)
    result = EscrowReleaseService.run_release_sweep()
    # SweepResult(released_count=3, skipped_count=1, failed_count=0)

    # Buyer confirms receipt early
    result = EscrowReleaseService.release(txn.id, actor=request.user)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from core.exceptions import PermissionDeniedError
from core.services import BaseService
from settlements.alerts import raise_operator_alert
from settlements.exceptions import (
    GatewayError,
    GatewayInvalidRequestError,
    InvalidStateTransitionError,
    LockAcquisitionError,
    StaleRecordError,
    TransactionNotFoundError,
)
from settlements.gateways import IdempotencyKeyGenerator, get_gateway
from settlements.ledger import TransactionLedger
from settlements.locks import transaction_lock
from settlements.models import ESCROW_RELEASED_NOTE, PayoutAccount, Transaction
from settlements.services.transition_manager import TransitionManager
from settlements.state_machines import TransactionStatus

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable
    from datetime import datetime
    from typing import Any

# Attempts at recording the payout outcome against concurrent writers
RECORD_OUTCOME_ATTEMPTS = 3


# =============================================================================
# Result Types
# =============================================================================


class ReleaseOutcome:
    RELEASED = "released"
    SKIPPED = "skipped"
    DISBURSEMENT_PENDING = "disbursement_pending"
    DISBURSEMENT_FAILED = "disbursement_failed"


@dataclass
class ReleaseResult:
    """
    Outcome of one release attempt.

    Attributes:
        outcome: One of ReleaseOutcome
        transaction: Transaction after the attempt (None if it vanished)
        payout_reference: Gateway payout ID when disbursed
        error: Gateway error when this attempt failed
    """

    outcome: str
    transaction: Transaction | None = None
    payout_reference: str | None = None
    error: GatewayError | None = None

    @property
    def released(self) -> bool:
        return self.outcome != ReleaseOutcome.SKIPPED


@dataclass
class SweepResult:
    released_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


# =============================================================================
# Service
# =============================================================================


class EscrowReleaseService(BaseService):
    """
    Releases escrowed funds exactly once and disburses them to sellers.

    All methods are class methods - no instance state is maintained.
    """

    # =========================================================================
    # Eligibility
    # =========================================================================

    @classmethod
    def eligible_for_auto_release(cls, now: datetime | None = None):
        """Transactions the sweep may release at `now`."""
        now = now or timezone.now()
        return Transaction.objects.filter(
            status=TransactionStatus.HELD_IN_ESCROW,
            escrow_auto_release_enabled=True,
            escrow_release_date__lte=now,
            escrow_is_released=False,
            is_disputed=False,
        )

    @staticmethod
    def _is_auto_releasable(txn: Transaction, now: datetime) -> bool:
        return (
            txn.status == TransactionStatus.HELD_IN_ESCROW
            and txn.escrow_auto_release_enabled
            and txn.escrow_release_date is not None
            and txn.escrow_release_date <= now
            and not txn.escrow_is_released
            and not txn.is_disputed
        )

    # =========================================================================
    # Sweep
    # =========================================================================

    @classmethod
    def run_release_sweep(
        cls,
        now: datetime | None = None,
        batch_size: int | None = None,
        heartbeat: Callable[[], bool] | None = None,
    ) -> SweepResult:
        """
        Release every transaction whose escrow period has ended.

        Candidates are processed oldest release date first, in batches of
        SETTLEMENTS_RELEASE_BATCH_SIZE. Each candidate is handled on its
        own: a failure is logged and counted without stopping the sweep.

        Args:
            now: Sweep time (defaults to timezone.now())
            batch_size: Candidates per query (default from settings)
            heartbeat: Called after every batch, typically the sweep lock's
                extend(). A false return stops the sweep.

        Returns:
            SweepResult with released, skipped and failed counts
        """
        now = now or timezone.now()
        batch_size = batch_size or getattr(settings, "SETTLEMENTS_RELEASE_BATCH_SIZE", 100)
        logger = cls.get_logger()
        result = SweepResult()

        logger.info("Starting escrow release sweep", extra={"now": now.isoformat()})

        last_key: tuple[datetime, uuid.UUID] | None = None
        while True:
            candidates = cls.eligible_for_auto_release(now)
            if last_key is not None:
                last_date, last_id = last_key
                candidates = candidates.filter(
                    Q(escrow_release_date__gt=last_date)
                    | Q(escrow_release_date=last_date, id__gt=last_id)
                )
            batch = list(
                candidates.order_by("escrow_release_date", "id").values_list(
                    "id", "version", "escrow_release_date"
                )[:batch_size]
            )
            if not batch:
                break

            for txn_id, version, _release_date in batch:
                try:
                    outcome = cls._auto_release(txn_id, version, now)
                except Exception as e:
                    logger.error(
                        f"Failed to release transaction {txn_id}: {e}",
                        extra={"transaction_id": str(txn_id), "error": str(e)},
                        exc_info=True,
                    )
                    result.failed_count += 1
                    continue

                if outcome.outcome == ReleaseOutcome.SKIPPED:
                    result.skipped_count += 1
                elif outcome.outcome == ReleaseOutcome.DISBURSEMENT_FAILED:
                    result.failed_count += 1
                else:
                    result.released_count += 1

            last_key = (batch[-1][2], batch[-1][0])
            if len(batch) < batch_size:
                break
            if heartbeat is not None and not heartbeat():
                logger.warning(
                    "Release sweep lost its lock, stopping early",
                    extra=result.to_dict(),
                )
                break

        logger.info(
            "Escrow release sweep complete",
            extra=result.to_dict(),
        )
        return result

    @classmethod
    def _auto_release(
        cls,
        transaction_id: uuid.UUID,
        version: int,
        now: datetime,
    ) -> ReleaseResult:
        """Claim one sweep candidate at the version it was selected with."""
        try:
            txn = cls._claim(transaction_id, version, actor=None, now=now)
        except LockAcquisitionError:
            return cls._skip_locked(transaction_id)
        except (StaleRecordError, InvalidStateTransitionError):
            try:
                current = TransactionLedger.get(transaction_id)
            except TransactionNotFoundError:
                return ReleaseResult(ReleaseOutcome.SKIPPED)
            if not cls._is_auto_releasable(current, now):
                cls.get_logger().info(
                    f"Transaction {current.reference} no longer eligible, skipping",
                    extra={
                        "transaction_id": str(transaction_id),
                        "status": current.status,
                        "escrow_is_released": current.escrow_is_released,
                        "is_disputed": current.is_disputed,
                    },
                )
                return ReleaseResult(ReleaseOutcome.SKIPPED, current)
            # Unrelated write in between; one more claim at the new version
            try:
                txn = cls._claim(transaction_id, current.version, actor=None, now=now)
            except LockAcquisitionError:
                return cls._skip_locked(transaction_id)
            except (StaleRecordError, InvalidStateTransitionError):
                return ReleaseResult(ReleaseOutcome.SKIPPED, current)

        return cls._queue_disbursement(txn)

    @classmethod
    def _skip_locked(cls, transaction_id: uuid.UUID) -> ReleaseResult:
        cls.get_logger().info(
            f"Transaction {transaction_id} is being settled elsewhere, skipping",
            extra={"transaction_id": str(transaction_id)},
        )
        return ReleaseResult(ReleaseOutcome.SKIPPED)

    # =========================================================================
    # Manual Release
    # =========================================================================

    @classmethod
    def release(
        cls,
        transaction_id: uuid.UUID | str,
        actor,
        expected_version: int | None = None,
        reason: str = "Buyer confirmed receipt",
        now: datetime | None = None,
    ) -> ReleaseResult:
        """
        Release escrow before the hold period ends.

        Allowed for the buyer and staff while the transaction is held in
        escrow. Ignores the release date and the auto-release flag.

        Args:
            transaction_id: Transaction to release
            actor: Buyer or staff user
            expected_version: Version the caller read (defaults to current)
            reason: Logged with the release
            now: Release time (defaults to timezone.now())

        Returns:
            ReleaseResult (SKIPPED if it was already released). The payout
            is queued, so the outcome is usually DISBURSEMENT_PENDING.

        Raises:
            PermissionDeniedError: Actor is neither buyer nor staff
            InvalidStateTransitionError: Not held in escrow
            StaleRecordError: Changed since expected_version
            LockAcquisitionError: A refund is in progress
        """
        now = now or timezone.now()
        txn = TransactionLedger.get(transaction_id)
        if not getattr(actor, "is_staff", False) and actor.pk != txn.buyer_id:
            raise PermissionDeniedError(
                "Only the buyer or staff can release escrow",
                details={"transaction_id": str(txn.id)},
            )
        if txn.escrow_is_released:
            return ReleaseResult(ReleaseOutcome.SKIPPED, txn)
        if txn.status != TransactionStatus.HELD_IN_ESCROW:
            raise InvalidStateTransitionError(
                f"Cannot release escrow for a {txn.status} transaction",
                details={
                    "transaction_id": str(txn.id),
                    "current_status": txn.status,
                    "target_status": TransactionStatus.COMPLETED,
                },
            )

        version = txn.version if expected_version is None else expected_version
        try:
            claimed = cls._claim(txn.id, version, actor=actor, now=now)
        except StaleRecordError:
            current = TransactionLedger.get(txn.id)
            if current.escrow_is_released:
                return ReleaseResult(ReleaseOutcome.SKIPPED, current)
            raise

        cls.get_logger().info(
            f"Manual escrow release for {claimed.reference}",
            extra={
                "transaction_id": str(claimed.id),
                "actor_id": actor.pk,
                "reason": reason,
            },
        )
        return cls._queue_disbursement(claimed)

    @classmethod
    def release_disputed(
        cls,
        transaction_id: uuid.UUID | str,
        actor,
        expected_version: int,
        changes: dict[str, Any],
        now: datetime | None = None,
    ) -> ReleaseResult:
        """
        Release a disputed transaction in the seller's favour.

        Transition: DISPUTED -> COMPLETED, with the dispute resolution
        fields written in the same update as the release flags.
        """
        claimed = cls._claim(
            transaction_id,
            expected_version,
            actor=actor,
            now=now or timezone.now(),
            changes=changes,
        )
        return cls._queue_disbursement(claimed)

    # =========================================================================
    # Claim and Disbursement
    # =========================================================================

    @classmethod
    def _claim(
        cls,
        transaction_id: uuid.UUID | str,
        expected_version: int,
        *,
        actor,
        now: datetime,
        changes: dict[str, Any] | None = None,
    ) -> Transaction:
        """
        Move to COMPLETED and set the release flags in one write.

        Raises:
            LockAcquisitionError: A refund holds the settlement lock
            StaleRecordError: Another writer changed the transaction
            InvalidStateTransitionError: Not in a releasable status
        """
        with transaction_lock(transaction_id, blocking=False):
            return TransitionManager.transition(
                transaction_id,
                TransactionStatus.COMPLETED,
                actor=actor,
                note=ESCROW_RELEASED_NOTE,
                expected_version=expected_version,
                changes={
                    "escrow_is_released": True,
                    "escrow_released_at": now,
                    "escrow_released_by": actor,
                    **(changes or {}),
                },
                now=now,
            )

    @classmethod
    def _queue_disbursement(cls, txn: Transaction) -> ReleaseResult:
        """
        Hand the payout of a claimed transaction to a Celery worker.

        Returns the outcome known once the task is queued: pending, or
        final when the task ran eagerly. A broker failure is recorded on
        the transaction like a failed payout, so retry_disbursement can
        pick it up.
        """
        # Import here to avoid circular imports
        from settlements.workers.release_sweeper import disburse_released_transaction

        try:
            disburse_released_transaction.delay(str(txn.id))
        except Exception as e:
            cls.get_logger().error(
                f"Failed to queue disbursement for {txn.reference}: {type(e).__name__}",
                extra={"transaction_id": str(txn.id)},
                exc_info=True,
            )
            txn = cls._record_outcome(
                txn, {"escrow_disbursement_error": f"[DISBURSEMENT_NOT_QUEUED] {e}"}
            )
            raise_operator_alert(
                "DISBURSEMENT_NOT_QUEUED",
                "Escrow released but the seller payout could not be queued",
                transaction_id=txn.id,
                details={"error": str(e), "amount": txn.amount_final},
            )
            return ReleaseResult(ReleaseOutcome.DISBURSEMENT_FAILED, txn)

        current = TransactionLedger.get(txn.id)
        if current.escrow_payout_reference:
            return ReleaseResult(
                ReleaseOutcome.RELEASED,
                current,
                payout_reference=current.escrow_payout_reference,
            )
        if current.escrow_disbursement_error:
            return ReleaseResult(ReleaseOutcome.DISBURSEMENT_FAILED, current)
        return ReleaseResult(ReleaseOutcome.DISBURSEMENT_PENDING, current)

    @classmethod
    def disburse(
        cls,
        transaction_id: uuid.UUID | str,
        *,
        final_attempt: bool = True,
    ) -> ReleaseResult:
        """
        Make one payout attempt for a released transaction.

        Pays amount_final to the seller's payout account. A transaction
        that already has a payout reference is not paid again.

        Args:
            transaction_id: Released transaction
            final_attempt: When False, retryable gateway errors are raised
                for the caller to retry later. Otherwise every gateway
                failure is recorded on the transaction and raised as an
                operator alert.

        Raises:
            InvalidStateTransitionError: Escrow has not been released
            GatewayError: Retryable failure and final_attempt is False
        """
        logger = cls.get_logger()
        txn = TransactionLedger.get(transaction_id)
        if not txn.escrow_is_released:
            raise InvalidStateTransitionError(
                "Only released transactions can be disbursed",
                error_code="DISBURSEMENT_NOT_RETRYABLE",
                details={"transaction_id": str(txn.id), "current_status": txn.status},
            )
        if txn.escrow_payout_reference:
            return ReleaseResult(
                ReleaseOutcome.RELEASED, txn, payout_reference=txn.escrow_payout_reference
            )

        account = PayoutAccount.objects.filter(user_id=txn.seller_id).first()
        try:
            if account is None or not account.payouts_enabled:
                raise GatewayInvalidRequestError(
                    "Seller has no payout account that accepts payouts",
                    error_code="PAYOUT_ACCOUNT_UNAVAILABLE",
                    gateway=txn.gateway,
                )
            payout = get_gateway(txn.gateway).disburse(
                seller_ref=account.account_reference,
                amount=txn.amount_final,
                currency=txn.currency,
                idempotency_key=IdempotencyKeyGenerator.generate("disburse", txn.id),
            )
        except GatewayError as e:
            if e.is_retryable and not final_attempt:
                logger.warning(
                    f"Disbursement attempt failed for {txn.reference}, will retry",
                    extra={"transaction_id": str(txn.id), "error_code": e.error_code},
                )
                raise
            logger.error(
                f"Disbursement failed for {txn.reference}",
                extra={
                    "transaction_id": str(txn.id),
                    "error_code": e.error_code,
                    "retryable": e.is_retryable,
                },
            )
            txn = cls._record_outcome(
                txn, {"escrow_disbursement_error": f"[{e.error_code}] {e.message}"}
            )
            raise_operator_alert(
                "DISBURSEMENT_FAILED",
                f"Escrow released but disbursement to seller failed: {e.message}",
                transaction_id=txn.id,
                details={"error_code": e.error_code, "amount": txn.amount_final},
            )
            return ReleaseResult(ReleaseOutcome.DISBURSEMENT_FAILED, txn, error=e)

        txn = cls._record_outcome(
            txn,
            {"escrow_payout_reference": payout.id, "escrow_disbursement_error": None},
        )
        logger.info(
            f"Disbursed {txn.amount_final} {txn.currency} for {txn.reference}",
            extra={"transaction_id": str(txn.id), "payout_id": payout.id},
        )
        return ReleaseResult(ReleaseOutcome.RELEASED, txn, payout_reference=payout.id)

    @classmethod
    def _record_outcome(cls, txn: Transaction, fields: dict[str, Any]) -> Transaction:
        """Write disbursement fields, re-reading on version conflicts."""
        for attempt in range(1, RECORD_OUTCOME_ATTEMPTS + 1):
            current = TransactionLedger.get(txn.id)
            try:
                TransactionLedger.conditional_update(
                    current.id, expected_version=current.version, fields=fields
                )
                return TransactionLedger.get(txn.id)
            except StaleRecordError:
                if attempt >= RECORD_OUTCOME_ATTEMPTS:
                    raise_operator_alert(
                        "DISBURSEMENT_OUTCOME_NOT_RECORDED",
                        "Could not record disbursement outcome after repeated conflicts",
                        transaction_id=txn.id,
                        details={"fields": sorted(fields)},
                    )
                    return current
        return txn

    @classmethod
    def retry_disbursement(cls, transaction_id: uuid.UUID | str) -> ReleaseResult:
        """
        Retry the payout of a released transaction whose disbursement failed.

        Makes one attempt with the same idempotency key, so a payout that
        actually went through is not repeated.

        Raises:
            InvalidStateTransitionError: Not released, or already disbursed
        """
        txn = TransactionLedger.get(transaction_id)
        if not txn.escrow_is_released or txn.escrow_payout_reference:
            raise InvalidStateTransitionError(
                "Only released transactions without a payout can be retried",
                error_code="DISBURSEMENT_NOT_RETRYABLE",
                details={
                    "transaction_id": str(txn.id),
                    "escrow_is_released": txn.escrow_is_released,
                    "escrow_payout_reference": txn.escrow_payout_reference,
                },
            )
        return cls.disburse(txn.id)


__all__ = [
    "EscrowReleaseService",
    "ReleaseOutcome",
    "ReleaseResult",
    "SweepResult",
]
