"""
Operator alerts for settlement failures that need human follow-up.

Alerts go to the "settlements.alerts" logger at CRITICAL (routed by the
LOGGING config) and to the operator_alert signal for any paging hook.

Usage:
    from settlements.alerts import raise_operator_alert

    raise_operator_alert(
        "DISBURSEMENT_FAILED",
        "Escrow released but payout to seller failed",
        transaction_id=txn.id,
        details={"error_code": e.error_code},
    )
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from settlements.signals import operator_alert, send_robust_logged

if TYPE_CHECKING:
    from typing import Any

alert_logger = logging.getLogger("settlements.alerts")


def raise_operator_alert(
    code: str,
    message: str,
    transaction_id: Any = None,
    details: dict[str, Any] | None = None,
) -> None:
    """
    Record an alert for operators. Never raises.

    Args:
        code: Machine-readable alert code
        message: Human-readable description
        transaction_id: Affected transaction, if any
        details: Extra context for the operator
    """
    details = details or {}
    alert_logger.critical(
        message,
        extra={
            "alert_code": code,
            "transaction_id": str(transaction_id) if transaction_id else None,
            **details,
        },
    )
    send_robust_logged(
        operator_alert,
        sender=None,
        code=code,
        message=message,
        transaction_id=transaction_id,
        details=details,
    )


__all__ = [
    "raise_operator_alert",
]
