"""
Fee calculation for marketplace transactions.

Fees are computed from the agreed (final) amount and the payment method:

    platform fee = round(amount * PLATFORM_FEE_RATE)
    payment fee  = round(amount * PAYMENT_METHOD_FEE_RATES[method])
    total        = platform fee + payment fee

All amounts are integers in the smallest currency unit. Rounding is
half-up to the nearest unit, using Decimal arithmetic so results never
depend on binary float representation.

Usage:
    from settlements.fees import compute_fees

    fees = compute_fees(1000, "card")
    # FeeBreakdown(platform=25, payment=29, total=54)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.conf import settings

from settlements.exceptions import TransactionValidationError
from settlements.state_machines import PaymentMethod

# Per-method gateway fee rates
PAYMENT_METHOD_FEE_RATES: dict[str, Decimal] = {
    PaymentMethod.CARD: Decimal("0.029"),
    PaymentMethod.NETBANKING: Decimal("0.019"),
    PaymentMethod.UPI: Decimal("0.015"),
    PaymentMethod.WALLET: Decimal("0.020"),
    PaymentMethod.BANK_TRANSFER: Decimal("0.010"),
}

# Rate used when the method is unknown or missing
DEFAULT_PAYMENT_METHOD = PaymentMethod.CARD

DEFAULT_PLATFORM_FEE_RATE = Decimal("0.025")


@dataclass(frozen=True)
class FeeBreakdown:
    """
    Fees charged on a transaction, in the smallest currency unit.

    Attributes:
        platform: Marketplace commission
        payment: Payment processing fee for the chosen method
        total: platform + payment
    """

    platform: int
    payment: int
    total: int

    def as_model_fields(self) -> dict[str, int]:
        """Return the fee columns of Transaction keyed by field name."""
        return {
            "fee_platform": self.platform,
            "fee_payment": self.payment,
            "fee_total": self.total,
        }


def get_platform_fee_rate() -> Decimal:
    """Platform fee rate from settings (PLATFORM_FEE_RATE)."""
    rate = getattr(settings, "PLATFORM_FEE_RATE", DEFAULT_PLATFORM_FEE_RATE)
    return Decimal(str(rate))


def get_payment_fee_rate(payment_method: str | None) -> Decimal:
    """Fee rate for a payment method, falling back to the card rate."""
    return PAYMENT_METHOD_FEE_RATES.get(
        payment_method, PAYMENT_METHOD_FEE_RATES[DEFAULT_PAYMENT_METHOD]
    )


def _round_units(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_fees(amount: int, payment_method: str | None = None) -> FeeBreakdown:
    """
    Compute platform and payment fees for an amount.

    Args:
        amount: Final agreed amount in the smallest currency unit
        payment_method: One of PaymentMethod; unknown or None uses card rate

    Returns:
        FeeBreakdown with platform, payment and total fees

    Raises:
        TransactionValidationError: If amount is negative or not a number
    """
    if isinstance(amount, bool):
        raise TransactionValidationError(
            "Amount must be a number",
            error_code="INVALID_AMOUNT",
            details={"amount": amount},
        )
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        raise TransactionValidationError(
            "Amount must be a number",
            error_code="INVALID_AMOUNT",
            details={"amount": str(amount)},
        )

    if not value.is_finite() or value < 0:
        raise TransactionValidationError(
            "Amount must be a non-negative number",
            error_code="INVALID_AMOUNT",
            details={"amount": str(amount)},
        )

    platform = _round_units(value * get_platform_fee_rate())
    payment = _round_units(value * get_payment_fee_rate(payment_method))
    return FeeBreakdown(platform=platform, payment=payment, total=platform + payment)


__all__ = [
    "FeeBreakdown",
    "PAYMENT_METHOD_FEE_RATES",
    "compute_fees",
    "get_payment_fee_rate",
    "get_platform_fee_rate",
]
