"""
Concurrency control utilities for settlement operations.

Two complementary mechanisms:

1. **Distributed Locks** (DistributedLock)
   - Redis-based mutual exclusion across processes/servers
   - TTL prevents deadlocks from crashed workers
   - Use for: keeping a single release sweep running at a time, and
     serializing the money-moving steps (refund, escrow release) of one
     transaction through transaction_lock()

2. **Optimistic Locking** (raise_for_missed_write)
   - Version-based conflict detection on conditional writes
   - No row locks are held while a gateway call is in flight
   - Use for: every Transaction write after creation

Usage:

    from settlements.locks import DistributedLock

    with DistributedLock("settlements:release_sweep", ttl=300, blocking=False):
        run_sweep()

    from settlements.locks import raise_for_missed_write

    updated = Transaction.objects.filter(pk=pk, version=3).update(...)
    if not updated:
        raise_for_missed_write(Transaction, pk, expected_version=3)
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING

from django.conf import settings
from django_redis import get_redis_connection

from settlements.exceptions import (
    LockAcquisitionError,
    StaleRecordError,
    TransactionNotFoundError,
)

if TYPE_CHECKING:
    from typing import Any

    from django.db import models
    from redis import Redis


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Example:
        # Skip the run when another worker already holds the lock
        try:
            with DistributedLock("settlements:release_sweep", blocking=False):
                sweep()
        except LockAcquisitionError:
            logger.info("Sweep already running")

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
        blocking: If True, acquire() waits until lock is available
        timeout: Maximum wait time in seconds (only if blocking=True)
    """

    # Lua script for atomic check-and-delete (release)
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    # Lua script for atomic check-and-extend
    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Attempt to acquire the lock.

        Returns:
            True if lock was acquired

        Raises:
            LockAcquisitionError: If lock couldn't be acquired
        """
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            end_time = time.time() + self.timeout
            while time.time() < end_time:
                if self._try_acquire(redis):
                    return True
                time.sleep(0.05)

            self._token = None
            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis):
            self._token = None
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Safe to call multiple times; only the owning token can delete the key.
        """
        if self._token is None:
            return False

        redis = self._get_redis()
        result = redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    def extend(self, additional_ttl: int | None = None) -> bool:
        """Reset the lock TTL if we still hold it."""
        if self._token is None:
            return False

        ttl = additional_ttl or self.ttl
        redis = self._get_redis()
        result = redis.eval(self.EXTEND_SCRIPT, 1, self.key, self._token, ttl)
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


def transaction_lock(
    transaction_id: uuid_module.UUID | str, *, blocking: bool = True
) -> DistributedLock:
    """
    Lock guarding the gateway-backed settlement of one transaction.

    A refund holds it across the gateway call and the REFUNDED write, and
    an escrow release holds it for the COMPLETED claim, so a transaction
    can never be both refunded and released.

    Settings:
        SETTLEMENTS_TRANSACTION_LOCK_TTL: Lock TTL in seconds (default: 120)
        SETTLEMENTS_TRANSACTION_LOCK_TIMEOUT: Blocking wait in seconds (default: 10)
    """
    return DistributedLock(
        f"settlements:transaction:{transaction_id}",
        ttl=getattr(settings, "SETTLEMENTS_TRANSACTION_LOCK_TTL", 120),
        blocking=blocking,
        timeout=getattr(settings, "SETTLEMENTS_TRANSACTION_LOCK_TIMEOUT", 10.0),
    )


# =============================================================================
# Optimistic Locking
# =============================================================================


def raise_for_missed_write(
    model_class: type[models.Model],
    pk: Any,
    expected_version: int,
) -> None:
    """
    Explain why a conditional write matched no row.

    Called after a `filter(pk=..., version=...).update(...)` returned 0.
    Distinguishes a missing record from a concurrent modification.

    Raises:
        TransactionNotFoundError: If the record doesn't exist
        StaleRecordError: If the record exists at a different version
    """
    current_version = (
        model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
    )
    model_name = model_class.__name__

    if current_version is None:
        raise TransactionNotFoundError(
            f"{model_name} {pk} not found",
            error_code=f"{model_name.upper()}_NOT_FOUND",
            details={"pk": str(pk)},
        )

    raise StaleRecordError(
        f"{model_name} {pk} has been modified "
        f"(expected version {expected_version}, current {current_version})",
        details={
            "pk": str(pk),
            "expected_version": expected_version,
            "current_version": current_version,
        },
    )


__all__ = [
    "DistributedLock",
    "raise_for_missed_write",
    "transaction_lock",
]
