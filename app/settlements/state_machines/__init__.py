"""
State machine enums and helpers for settlement models.

This module defines the state enums and transition graph used by the
Transaction model with django-fsm.
"""

from settlements.state_machines.states import (
    TERMINAL_STATUSES,
    TRANSITION_METHODS,
    TRANSITIONS,
    Currency,
    DisputeOutcome,
    DisputeResolutionStatus,
    GatewayName,
    PaymentMethod,
    TransactionStatus,
    is_legal_transition,
)

__all__ = [
    "TERMINAL_STATUSES",
    "TRANSITION_METHODS",
    "TRANSITIONS",
    "Currency",
    "DisputeOutcome",
    "DisputeResolutionStatus",
    "GatewayName",
    "PaymentMethod",
    "TransactionStatus",
    "is_legal_transition",
]
