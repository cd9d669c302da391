"""
Payment gateway adapters.

All gateway calls made by the settlement engine go through these
adapters to ensure consistent error handling, timeouts and idempotency.

Usage:
    from settlements.gateways import IdempotencyKeyGenerator, get_gateway

    gateway = get_gateway(txn.gateway)
    result = gateway.refund(
        transaction_ref=txn.gateway_transaction_id,
        amount=500,
        currency=txn.currency,
        idempotency_key=IdempotencyKeyGenerator.generate("refund", txn.id),
    )
"""

from settlements.gateways.base import (
    ChargeResult,
    IdempotencyKeyGenerator,
    PaymentGateway,
    PayoutResult,
    RefundResult,
    backoff_delay,
    call_with_retries,
    is_retryable_gateway_error,
)
from settlements.gateways.registry import get_gateway, reset_gateways, set_gateway

__all__ = [
    "ChargeResult",
    "IdempotencyKeyGenerator",
    "PaymentGateway",
    "PayoutResult",
    "RefundResult",
    "backoff_delay",
    "call_with_retries",
    "get_gateway",
    "is_retryable_gateway_error",
    "reset_gateways",
    "set_gateway",
]
