"""
Payment gateway contract and shared helpers.

Every gateway adapter implements PaymentGateway and translates its SDK
errors into settlements.exceptions.GatewayError subclasses. Calls made
while serving a request go through call_with_retries, which makes a
small number of in-process retries. Background disbursements make one
attempt per Celery task run and are retried by Celery with backoff_delay.

Usage:
    from settlements.gateways import IdempotencyKeyGenerator, call_with_retries
    from settlements.gateways import get_gateway

    gateway = get_gateway(txn.gateway)
    refund = call_with_retries(
        gateway.refund,
        transaction_ref=txn.gateway_transaction_id,
        amount=txn.amount_final,
        currency=txn.currency,
        idempotency_key=IdempotencyKeyGenerator.generate("refund", txn.id),
    )
"""

from __future__ import annotations

import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from django.conf import settings

from settlements.exceptions import GatewayError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class ChargeResult:
    """
    Result of starting a payment with the gateway.

    Attributes:
        order_id: Gateway order / payment intent ID
        client_secret: Secret the buyer's client uses to confirm payment
        status: Gateway-side status
        raw_response: Full gateway response (for debugging)
    """

    order_id: str
    client_secret: str | None = None
    status: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    """
    Result of a refund.

    Attributes:
        id: Gateway refund ID
        amount: Refunded amount in smallest currency unit
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        raw_response: Full gateway response
    """

    id: str
    amount: int
    currency: str
    status: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class PayoutResult:
    """
    Result of a disbursement to a seller.

    Attributes:
        id: Gateway payout / transfer ID
        amount: Amount disbursed
        currency: Currency code
        destination: Seller payout account reference
        raw_response: Full gateway response
    """

    id: str
    amount: int
    currency: str
    destination: str
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Gateway Contract
# =============================================================================


@runtime_checkable
class PaymentGateway(Protocol):
    """
    Operations the settlement engine needs from a payment gateway.

    All amounts are in the smallest currency unit. Implementations must
    pass the idempotency key through to the gateway so that a retried
    call never moves money twice, and must raise GatewayError subclasses
    only.
    """

    name: str

    def charge(
        self,
        transaction_ref: str,
        amount: int,
        currency: str,
        payment_method: str,
        idempotency_key: str,
    ) -> ChargeResult: ...

    def refund(
        self,
        transaction_ref: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        reason: str = "",
    ) -> RefundResult: ...

    def disburse(
        self,
        seller_ref: str,
        amount: int,
        currency: str,
        idempotency_key: str,
    ) -> PayoutResult: ...


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for gateway calls.

    Format: "{operation}:{entity_id}" or "{operation}:{entity_id}:v{version}"

    Keys are deterministic per operation and transaction, so every retry
    of the same logical operation (from any worker) reuses the same key
    and the gateway deduplicates it.

    Example:
        key = IdempotencyKeyGenerator.generate("disburse", txn.id)
        # Result: "disburse:550e8400-e29b-41d4-a716-446655440000"

    Charges pass the record version: renegotiated terms need a new key.
    """

    @staticmethod
    def generate(
        operation: str, entity_id: uuid.UUID | str, version: int | None = None
    ) -> str:
        if version is None:
            return f"{operation}:{entity_id}"
        return f"{operation}:{entity_id}:v{version}"


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_gateway_error(error: Exception) -> bool:
    """
    Check if a gateway error is transient and safe to retry.

    Args:
        error: The exception to check

    Returns:
        True for rate limits, timeouts and gateway outages
    """
    if isinstance(error, GatewayError):
        return getattr(error, "is_retryable", False)
    return False


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 1: 2.0 - 2.5 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    # Jitter spreads retries from concurrent workers
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


def call_with_retries(
    func: Callable[..., Any],
    *args: Any,
    max_retries: int | None = None,
    base_delay: float | None = None,
    **kwargs: Any,
) -> Any:
    """
    Call a gateway operation, retrying retryable errors with backoff.

    Args:
        func: Gateway method to call
        *args: Positional arguments for func
        max_retries: Retries after the first attempt
            (default: SETTLEMENTS_GATEWAY_INLINE_RETRIES)
        base_delay: Backoff base in seconds
            (default: SETTLEMENTS_GATEWAY_RETRY_BASE_DELAY)
        **kwargs: Keyword arguments for func

    Returns:
        Whatever func returns

    Raises:
        GatewayError: The last error once retries are exhausted, or the
            first non-retryable error
    """
    if max_retries is None:
        max_retries = getattr(settings, "SETTLEMENTS_GATEWAY_INLINE_RETRIES", 1)
    if base_delay is None:
        base_delay = getattr(settings, "SETTLEMENTS_GATEWAY_RETRY_BASE_DELAY", 1.0)

    attempt = 0
    while True:
        try:
            return func(*args, **kwargs)
        except GatewayError as e:
            if not is_retryable_gateway_error(e) or attempt >= max_retries:
                raise
            delay = backoff_delay(attempt, base=base_delay)
            logger.warning(
                f"Retryable gateway error, retrying in {delay:.2f}s",
                extra={
                    "operation": getattr(func, "__name__", repr(func)),
                    "attempt": attempt + 1,
                    "max_retries": max_retries,
                    "error_code": e.error_code,
                },
            )
            time.sleep(delay)
            attempt += 1


__all__ = [
    "ChargeResult",
    "IdempotencyKeyGenerator",
    "PaymentGateway",
    "PayoutResult",
    "RefundResult",
    "backoff_delay",
    "call_with_retries",
    "is_retryable_gateway_error",
]
