"""
Settlement models.

- Transaction: escrow settlement aggregate
- TimelineEntry: append-only status history
- PayoutAccount: seller payout destination
"""

from settlements.models.payout_account import PayoutAccount
from settlements.models.transaction import (
    ESCROW_RELEASED_NOTE,
    TimelineEntry,
    Transaction,
    default_hold_period_days,
    generate_transaction_reference,
)

__all__ = [
    "ESCROW_RELEASED_NOTE",
    "PayoutAccount",
    "TimelineEntry",
    "Transaction",
    "default_hold_period_days",
    "generate_transaction_reference",
]
