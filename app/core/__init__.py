"""
Core application: shared base classes for the domain apps.

Exceptions (import from core.exceptions):
    - BaseApplicationError and its ValidationError, NotFoundError,
      PermissionDeniedError, ConflictError, ExternalServiceError

Services (import from core.services):
    - BaseService: per-class logger for service classes

Models (import from core.models / core.model_mixins):
    - BaseModel: created_at / updated_at timestamps
    - UUIDPrimaryKeyMixin: UUID primary key

Note:
    Models are NOT imported here to avoid AppRegistryNotReady errors.
"""

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .services import BaseService

__all__ = [
    "BaseService",
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "ExternalServiceError",
]
