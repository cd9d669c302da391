"""
State enums and the legal transition graph for settlement transactions.

These are Django TextChoices for database storage and admin integration.
The Transaction model mirrors TRANSITIONS one-to-one with django-fsm
@transition methods (see TRANSITION_METHODS).

Transaction States:
    pending → processing → held_in_escrow → completed (release)
    pending/processing → cancelled
    pending/processing → failed
    held_in_escrow → disputed → refunded / completed / held_in_escrow
    held_in_escrow → refunded
"""

from django.db import models


class TransactionStatus(models.TextChoices):
    """
    States for the Transaction lifecycle.

    Terminal states: COMPLETED, REFUNDED, FAILED, CANCELLED

    Payment Flow:
        PENDING → PROCESSING → HELD_IN_ESCROW → COMPLETED

    Dispute Flow:
        HELD_IN_ESCROW → DISPUTED → REFUNDED
        HELD_IN_ESCROW → DISPUTED → COMPLETED (resolution releases)
        HELD_IN_ESCROW → DISPUTED → HELD_IN_ESCROW (resolution reinstates escrow)

    Refund Flow:
        HELD_IN_ESCROW → REFUNDED
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    HELD_IN_ESCROW = "held_in_escrow", "Held in Escrow"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"
    REFUNDED = "refunded", "Refunded"
    DISPUTED = "disputed", "Disputed"


# Legal edges: current status -> statuses it may move to
TRANSITIONS: dict[str, frozenset[str]] = {
    TransactionStatus.PENDING: frozenset(
        {
            TransactionStatus.PROCESSING,
            TransactionStatus.CANCELLED,
            TransactionStatus.FAILED,
        }
    ),
    TransactionStatus.PROCESSING: frozenset(
        {
            TransactionStatus.HELD_IN_ESCROW,
            TransactionStatus.FAILED,
            TransactionStatus.CANCELLED,
        }
    ),
    TransactionStatus.HELD_IN_ESCROW: frozenset(
        {
            TransactionStatus.COMPLETED,
            TransactionStatus.DISPUTED,
            TransactionStatus.REFUNDED,
        }
    ),
    TransactionStatus.DISPUTED: frozenset(
        {
            TransactionStatus.REFUNDED,
            TransactionStatus.COMPLETED,
            TransactionStatus.HELD_IN_ESCROW,
        }
    ),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.REFUNDED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)

# Target status -> Transaction method decorated with @transition
TRANSITION_METHODS: dict[str, str] = {
    TransactionStatus.PROCESSING: "process",
    TransactionStatus.HELD_IN_ESCROW: "hold",
    TransactionStatus.COMPLETED: "complete",
    TransactionStatus.DISPUTED: "dispute",
    TransactionStatus.REFUNDED: "refund",
    TransactionStatus.FAILED: "fail",
    TransactionStatus.CANCELLED: "cancel",
}


def is_legal_transition(current: str, target: str) -> bool:
    """Return True if target is reachable from current in one step."""
    return target in TRANSITIONS.get(current, frozenset())


class Currency(models.TextChoices):
    """Supported settlement currencies."""

    INR = "INR", "Indian Rupee"
    USD = "USD", "US Dollar"
    EUR = "EUR", "Euro"
    GBP = "GBP", "British Pound"


class PaymentMethod(models.TextChoices):
    """Payment methods a buyer can pay with."""

    CARD = "card", "Card"
    NETBANKING = "netbanking", "Net Banking"
    UPI = "upi", "UPI"
    WALLET = "wallet", "Wallet"
    BANK_TRANSFER = "bank_transfer", "Bank Transfer"


class GatewayName(models.TextChoices):
    """Payment gateways a transaction can be routed through."""

    RAZORPAY = "razorpay", "Razorpay"
    STRIPE = "stripe", "Stripe"
    PAYPAL = "paypal", "PayPal"


class DisputeResolutionStatus(models.TextChoices):
    """
    Resolution state of a dispute.

    State Flow:
        PENDING → RESOLVED
        PENDING → ESCALATED → RESOLVED
    """

    PENDING = "pending", "Pending"
    RESOLVED = "resolved", "Resolved"
    ESCALATED = "escalated", "Escalated"


class DisputeOutcome(models.TextChoices):
    """What a dispute resolution does with the held funds when no refund is given."""

    REINSTATE = "reinstate", "Reinstate Escrow"
    RELEASE = "release", "Release to Seller"
