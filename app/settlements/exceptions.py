"""
Settlement-specific exceptions for escrow transaction operations.

This module provides a hierarchy of exceptions for the settlement engine,
covering transaction domain errors, concurrency control errors, and
payment gateway errors.

Exception Hierarchy:
    SettlementError (base for settlement domain)
    ├── TransactionNotFoundError - Transaction lookup failures
    └── TransactionValidationError - Amount, party or listing validation failures

    GatewayError - Base for all payment gateway errors (ExternalServiceError)
    ├── GatewayDeclinedError - Payment method declined (permanent)
    ├── GatewayInvalidRequestError - Invalid request or account (permanent)
    ├── GatewayRateLimitError - Rate limited (transient, retry)
    ├── GatewayUnavailableError - Gateway unavailable (transient, retry)
    └── GatewayTimeoutError - Request timeout (transient, retry)

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    InvalidStateTransitionError - Transition not in the legal graph (inherits ConflictError)

Usage:
    from settlements.exceptions import (
        GatewayError,
        InvalidStateTransitionError,
        StaleRecordError,
    )

    # Optimistic locking conflict
    if rows_updated == 0:
        raise StaleRecordError(
            f"Transaction {pk} was modified by another process",
            details={"pk": str(pk), "expected_version": 3, "current_version": 5}
        )

    # Invalid state transition
    raise InvalidStateTransitionError(
        "Cannot move transaction from 'completed' to 'disputed'",
        details={"current_status": "completed", "target_status": "disputed"}
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Settlement Domain Exceptions
# =============================================================================


class SettlementError(BaseApplicationError):
    """
    Base exception for settlement operations that have no better home.

    Example:
        try:
            SettlementService.create_transaction(...)
        except SettlementError as e:
            return Response(e.to_dict(), status=400)
    """

    default_error_code: str = "SETTLEMENT_ERROR"


class TransactionNotFoundError(NotFoundError):
    """
    Raised when a transaction cannot be found.

    Example:
        txn = Transaction.objects.filter(id=transaction_id).first()
        if not txn:
            raise TransactionNotFoundError(
                f"Transaction {transaction_id} not found",
                details={"transaction_id": str(transaction_id)}
            )
    """

    default_error_code: str = "TRANSACTION_NOT_FOUND"


class TransactionValidationError(ValidationError):
    """
    Raised when transaction input fails validation.

    Use for:
    - Negative or non-numeric amounts
    - Buyer and seller being the same user
    - Unknown or unavailable listings
    - Refund amounts outside the refundable range
    """

    default_error_code: str = "TRANSACTION_VALIDATION_ERROR"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base exception for all payment gateway errors.

    Adapters translate their SDK errors into these classes so that
    services can decide retry behavior without knowing the gateway:
    - is_retryable True: transient error, safe to retry with backoff
    - is_retryable False: permanent error, do not retry

    Example:
        try:
            gateway.refund(...)
        except GatewayError as e:
            if e.is_retryable:
                schedule_retry(e, backoff=exponential)
            else:
                notify_operator(e)
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway: str | None = None,
        gateway_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway:
            details["gateway"] = gateway
        if gateway_code:
            details["gateway_code"] = gateway_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway = gateway
        self.gateway_code = gateway_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class GatewayDeclinedError(GatewayError):
    """
    Payment method was declined by the issuer.

    The buyer must use a different payment method.
    """

    default_error_code: str = "GATEWAY_DECLINED"
    is_retryable: bool = False


class GatewayInvalidRequestError(GatewayError):
    """
    Request rejected by the gateway as malformed or not allowed.

    Covers invalid amounts, unknown payment references, refunds above
    the captured amount, payout accounts that cannot receive funds and
    gateways with no configured adapter.
    """

    default_error_code: str = "GATEWAY_INVALID_REQUEST"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class GatewayRateLimitError(GatewayError):
    """Rate limited by the gateway API."""

    default_error_code: str = "GATEWAY_RATE_LIMITED"
    is_retryable: bool = True


class GatewayUnavailableError(GatewayError):
    """
    Gateway is temporarily unavailable.

    Network connectivity issues and gateway 5xx responses.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class GatewayTimeoutError(GatewayError):
    """
    Gateway call timed out.

    IMPORTANT: The operation may have succeeded on the gateway's side.
    Retries must reuse the same idempotency key so the gateway returns
    the original response instead of moving money twice.
    """

    default_error_code: str = "GATEWAY_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    The transaction was modified by another process between read and
    conditional write. The caller should either retry with fresh data
    or abort.

    Attributes:
        details: Contains pk, expected_version, and current_version
    """

    default_error_code: str = "STALE_RECORD"


# Name used by callers that think in terms of write conflicts.
ConcurrencyConflict = StaleRecordError


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Attributes:
        details: Contains key and timeout information
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a status change is not in the legal transition graph.

    Wraps django-fsm's TransitionNotAllowed so callers get the standard
    error format.

    Attributes:
        details: Contains current_status and target_status

    Example:
        from django_fsm import TransitionNotAllowed

        try:
            txn.dispute()
        except TransitionNotAllowed:
            raise InvalidStateTransitionError(
                f"Cannot dispute transaction in '{txn.status}' status",
                details={"current_status": txn.status, "target_status": "disputed"}
            )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Settlement domain
    "SettlementError",
    "TransactionNotFoundError",
    "TransactionValidationError",
    # Gateway
    "GatewayError",
    "GatewayDeclinedError",
    "GatewayInvalidRequestError",
    "GatewayRateLimitError",
    "GatewayUnavailableError",
    "GatewayTimeoutError",
    # Concurrency control
    "StaleRecordError",
    "ConcurrencyConflict",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
]
