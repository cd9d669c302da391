"""
Workers for background settlement processing.

Usage:
    from settlements.workers import run_release_sweep, release_single_transaction

    run_release_sweep.delay()
    release_single_transaction.delay(str(txn.id), actor_id=user.pk)
"""

from settlements.workers.release_sweeper import (
    disburse_released_transaction,
    release_single_transaction,
    retry_disbursement,
    run_release_sweep,
)

__all__ = [
    "disburse_released_transaction",
    "release_single_transaction",
    "retry_disbursement",
    "run_release_sweep",
]
