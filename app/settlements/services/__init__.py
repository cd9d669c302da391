"""
Settlement services.

- TransitionManager: the single entry point for status changes
- SettlementService: creation, terms and the payment leg
- EscrowReleaseService: release sweep, manual release, disbursement
- DisputeService: dispute lifecycle
- RefundService: refunds through the gateway
"""

from settlements.services.dispute_service import DisputeService
from settlements.services.refund_service import RefundService
from settlements.services.release_service import (
    EscrowReleaseService,
    ReleaseOutcome,
    ReleaseResult,
    SweepResult,
)
from settlements.services.settlement_service import SettlementService
from settlements.services.transition_manager import TransitionManager

__all__ = [
    "DisputeService",
    "EscrowReleaseService",
    "RefundService",
    "ReleaseOutcome",
    "ReleaseResult",
    "SettlementService",
    "SweepResult",
    "TransitionManager",
]
