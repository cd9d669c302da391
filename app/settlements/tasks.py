"""
Celery tasks for settlements.

Re-exports the worker tasks so Celery autodiscovery
(app.autodiscover_tasks looks for <app>.tasks) registers them.
"""

from settlements.workers import (
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
