"""
Django signals for the settlements app.

Signals:
    transaction_status_changed: Sent after a status transition commits.
        Notification delivery hooks onto this signal.
    operator_alert: Sent when a situation needs human attention
        (e.g., funds released but disbursement failed).

Related files:
    - services/transition_manager.py: Sends transaction_status_changed
    - alerts.py: Sends operator_alert
    - apps.py: Signal import in ready()

Usage:
    from django.dispatch import receiver
    from settlements.signals import transaction_status_changed

    @receiver(transaction_status_changed)
    def notify_parties(sender, transaction, previous_status, new_status, **kwargs):
        ...
"""

from __future__ import annotations

import logging

from django.db import transaction as db_transaction
from django.dispatch import Signal, receiver

logger = logging.getLogger(__name__)

# kwargs: transaction, previous_status, new_status, actor, note
transaction_status_changed = Signal()

# kwargs: code, message, transaction_id, details
operator_alert = Signal()


def send_robust_logged(signal: Signal, sender, **kwargs) -> None:
    """
    Send a signal, logging receiver failures instead of raising them.

    Receivers are notification side channels and must never undo or
    block a committed settlement change.
    """
    for receiver_func, response in signal.send_robust(sender=sender, **kwargs):
        if isinstance(response, Exception):
            logger.error(
                f"Signal receiver {getattr(receiver_func, '__qualname__', receiver_func)} failed",
                extra={"error": str(response)},
                exc_info=response,
            )


def send_status_changed_on_commit(txn, previous_status: str, actor=None, note: str = "") -> None:
    """Queue transaction_status_changed for when the current DB transaction commits."""

    def _send():
        send_robust_logged(
            transaction_status_changed,
            sender=txn.__class__,
            transaction=txn,
            previous_status=previous_status,
            new_status=txn.status,
            actor=actor,
            note=note,
        )

    db_transaction.on_commit(_send)


@receiver(transaction_status_changed)
def log_status_change(sender, transaction, previous_status, new_status, **kwargs):
    """Audit log line for every committed transition."""
    logger.info(
        f"Transaction {transaction.reference} moved {previous_status} -> {new_status}",
        extra={
            "transaction_id": str(transaction.id),
            "previous_status": previous_status,
            "new_status": new_status,
            "actor_id": getattr(kwargs.get("actor"), "pk", None),
        },
    )


__all__ = [
    "operator_alert",
    "send_robust_logged",
    "send_status_changed_on_commit",
    "transaction_status_changed",
]
