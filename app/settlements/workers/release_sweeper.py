"""
Release sweeper worker for escrow that has reached its release date.

Tasks:
- run_release_sweep: Periodic task (celery-beat) releasing all due escrow
- release_single_transaction: Queued manual release of one transaction
- disburse_released_transaction: Seller payout after a release, retried
  by Celery on transient gateway errors
- retry_disbursement: Re-attempt a payout that failed after release

Usage:
    # Typically called via celery-beat schedule
    from settlements.workers import run_release_sweep

    # Or manually trigger a sweep
    run_release_sweep.delay()

    # Release one transaction on behalf of a user
    release_single_transaction.delay(str(txn.id), actor_id=user.pk)
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task
from django.conf import settings

from settlements.directories import UserDirectory
from settlements.exceptions import (
    GatewayError,
    InvalidStateTransitionError,
    LockAcquisitionError,
    StaleRecordError,
    TransactionNotFoundError,
)
from settlements.gateways import backoff_delay
from settlements.locks import DistributedLock
from settlements.services import EscrowReleaseService

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Lock key shared by all sweep runs
SWEEP_LOCK_KEY = "settlements:release_sweep"

# Lock TTL for a sweep run (seconds); longer than a normal sweep
SWEEP_LOCK_TTL = 300


# =============================================================================
# Periodic Task: Release Sweep
# =============================================================================


@shared_task(bind=True)
def run_release_sweep(self) -> dict:
    """
    Release every transaction whose escrow period has ended.

    Guarded by a non-blocking distributed lock: if a previous sweep is
    still running (large backlog), this run is skipped instead of
    queueing up behind it. The lock TTL is extended after every batch.
    Payouts are queued as disburse_released_transaction tasks, so the
    sweep itself never waits on the gateway.

    Returns:
        Dict with:
        - status: "completed" or "skipped"
        - released_count / skipped_count / failed_count (when completed)
    """
    try:
        with DistributedLock(SWEEP_LOCK_KEY, ttl=SWEEP_LOCK_TTL, blocking=False) as lock:
            result = EscrowReleaseService.run_release_sweep(heartbeat=lock.extend)
    except LockAcquisitionError:
        logger.info("Release sweep already running, skipping this run")
        return {"status": "skipped"}

    return {"status": "completed", **result.to_dict()}


# =============================================================================
# Individual Release Task
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(StaleRecordError, LockAcquisitionError),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def release_single_transaction(
    self,
    transaction_id: str,
    actor_id=None,
    reason: str = "Buyer confirmed receipt",
) -> dict:
    """
    Release one transaction's escrow outside the sweep.

    Args:
        transaction_id: UUID of the transaction
        actor_id: User performing the release (buyer or staff)
        reason: Release reason for the logs

    Returns:
        Dict with:
        - status: One of "released", "disbursement_pending",
                  "already_released", "disbursement_failed", "not_found",
                  "invalid_actor", "invalid_state"
        - transaction_id: The transaction processed
    """
    try:
        UUID(str(transaction_id))
    except ValueError:
        logger.error(f"Invalid transaction_id format: {transaction_id}")
        return {"status": "not_found", "transaction_id": transaction_id}

    actor = UserDirectory.resolve(actor_id) if actor_id is not None else None
    if actor is None:
        logger.warning(
            "Release requested without a valid actor",
            extra={"transaction_id": transaction_id, "actor_id": actor_id},
        )
        return {"status": "invalid_actor", "transaction_id": transaction_id}

    try:
        result = EscrowReleaseService.release(transaction_id, actor=actor, reason=reason)
    except TransactionNotFoundError:
        return {"status": "not_found", "transaction_id": transaction_id}
    except InvalidStateTransitionError as e:
        logger.warning(
            f"Transaction not releasable: {e.message}",
            extra={"transaction_id": transaction_id, **e.details},
        )
        return {"status": "invalid_state", "transaction_id": transaction_id}

    status = {
        "released": "released",
        "disbursement_pending": "disbursement_pending",
        "skipped": "already_released",
        "disbursement_failed": "disbursement_failed",
    }[result.outcome]
    return {"status": status, "transaction_id": transaction_id}


# =============================================================================
# Disbursement Tasks
# =============================================================================


@shared_task(bind=True, acks_late=True)
def disburse_released_transaction(self, transaction_id: str) -> dict:
    """
    Pay the seller of a transaction whose escrow has been released.

    Queued by every successful release claim. Each run makes a single
    gateway attempt with the transaction's disbursement idempotency key.
    Transient gateway errors (rate limit, timeout, outage) are retried
    with exponential backoff up to SETTLEMENTS_GATEWAY_MAX_RETRIES times;
    the last attempt records the failure and raises an operator alert.

    Returns:
        Dict with:
        - status: "released", "disbursement_failed" or "not_disbursable"
        - transaction_id: The transaction processed
    """
    max_retries = getattr(settings, "SETTLEMENTS_GATEWAY_MAX_RETRIES", 3)
    final_attempt = self.request.retries >= max_retries

    try:
        result = EscrowReleaseService.disburse(transaction_id, final_attempt=final_attempt)
    except (TransactionNotFoundError, InvalidStateTransitionError) as e:
        logger.warning(
            f"Transaction cannot be disbursed: {e.message}",
            extra={"transaction_id": transaction_id, "error_code": e.error_code},
        )
        return {
            "status": "not_disbursable",
            "transaction_id": transaction_id,
            "error_code": e.error_code,
        }
    except GatewayError as e:
        countdown = backoff_delay(
            self.request.retries,
            base=getattr(settings, "SETTLEMENTS_GATEWAY_RETRY_BASE_DELAY", 1.0),
        )
        logger.info(
            f"Retrying disbursement in {countdown:.1f}s",
            extra={
                "transaction_id": transaction_id,
                "attempt": self.request.retries + 1,
                "error_code": e.error_code,
            },
        )
        raise self.retry(exc=e, countdown=countdown, max_retries=max_retries)

    return {
        "status": result.outcome,
        "transaction_id": transaction_id,
        "payout_reference": result.payout_reference,
    }


@shared_task(bind=True, acks_late=True)
def retry_disbursement(self, transaction_id: str) -> dict:
    """
    Re-attempt the seller payout for a released transaction.

    Returns:
        Dict with status "released", "disbursement_failed" or "not_retryable"
    """
    try:
        result = EscrowReleaseService.retry_disbursement(transaction_id)
    except (TransactionNotFoundError, InvalidStateTransitionError) as e:
        return {
            "status": "not_retryable",
            "transaction_id": transaction_id,
            "error_code": e.error_code,
        }
    return {
        "status": result.outcome,
        "transaction_id": transaction_id,
        "payout_reference": result.payout_reference,
    }


__all__ = [
    "disburse_released_transaction",
    "release_single_transaction",
    "retry_disbursement",
    "run_release_sweep",
]
