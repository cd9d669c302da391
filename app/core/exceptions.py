"""
Base exception classes for application-wide error handling.

Every domain error carries a human message, a machine-readable code and
optional details, so the API layer can answer with one body shape:
{"error": ..., "error_code": ..., "details": {...}}.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Bad input or broken business rule (400)
    ├── NotFoundError - Record does not exist (404)
    ├── PermissionDeniedError - Caller may not do this (403)
    ├── ConflictError - Record state conflicts with the request (409)
    └── ExternalServiceError - A third-party call failed (502/503)

Usage:
    from core.exceptions import ConflictError, ValidationError

    raise ValidationError("Amount must be positive", error_code="INVALID_AMOUNT")

    raise ConflictError(
        "Transaction was modified",
        error_code="STALE_RECORD",
        details={"expected_version": 3, "current_version": 4},
    )

Note:
    These are service-layer errors. Request parsing errors stay with DRF
    serializers (serializer.is_valid(raise_exception=True)).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional context (ids, versions, limits)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to the API error body.

        Example:
            {
                "error": "Transaction not found",
                "error_code": "TRANSACTION_NOT_FOUND",
                "details": {"transaction_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """Raised when input or a business rule check fails."""

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """Raised when a single record that must exist is missing."""

    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller is authenticated but not allowed to act.

    Authentication failures (missing or bad token) stay with DRF.
    """

    default_error_code: str = "PERMISSION_DENIED"


class ConflictError(BaseApplicationError):
    """
    Raised when the request conflicts with the record's current state.

    Covers optimistic locking failures and illegal state transitions.
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when a third-party call fails.

    Log the provider's original error; do not expose it to clients.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
