"""
Tests for concurrency control utilities.

DistributedLock is tested against a mocked Redis client;
raise_for_missed_write against the database.
"""

import uuid

import pytest

from settlements.exceptions import (
    LockAcquisitionError,
    StaleRecordError,
    TransactionNotFoundError,
)
from settlements.locks import DistributedLock, raise_for_missed_write, transaction_lock
from settlements.models import Transaction


class TestDistributedLock:
    """Tests for DistributedLock class."""

    def test_acquire_success(self, mock_redis):
        lock = DistributedLock("settlements:test", ttl=30, blocking=False)

        assert lock.acquire() is True
        assert lock.is_held is True
        args, kwargs = mock_redis.set.call_args
        assert args[0] == "lock:settlements:test"
        assert kwargs["nx"] is True
        assert kwargs["ex"] == 30

    def test_tokens_are_unique(self, mock_redis):
        first = DistributedLock("a", blocking=False)
        second = DistributedLock("b", blocking=False)

        first.acquire()
        second.acquire()

        assert first._token != second._token

    def test_non_blocking_raises_when_held(self, mock_redis):
        mock_redis.set.return_value = False

        lock = DistributedLock("settlements:test", blocking=False)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert exc_info.value.details["key"] == "lock:settlements:test"
        assert lock.is_held is False

    def test_blocking_waits_then_acquires(self, mock_redis):
        mock_redis.set.side_effect = [False, False, True]

        lock = DistributedLock("settlements:test", blocking=True, timeout=1.0)

        assert lock.acquire() is True
        assert mock_redis.set.call_count == 3

    def test_blocking_timeout(self, mock_redis):
        mock_redis.set.return_value = False

        lock = DistributedLock("settlements:test", blocking=True, timeout=0.1)

        with pytest.raises(LockAcquisitionError):
            lock.acquire()

    def test_release_uses_owner_token(self, mock_redis):
        lock = DistributedLock("settlements:test", blocking=False)
        lock.acquire()
        token = lock._token

        assert lock.release() is True
        args = mock_redis.eval.call_args.args
        assert args[1:] == (1, "lock:settlements:test", token)
        assert lock.is_held is False

    def test_release_without_acquire(self, mock_redis):
        lock = DistributedLock("settlements:test")

        assert lock.release() is False
        mock_redis.eval.assert_not_called()

    def test_extend(self, mock_redis):
        lock = DistributedLock("settlements:test", ttl=30, blocking=False)
        lock.acquire()

        assert lock.extend(60) is True
        assert mock_redis.eval.call_args.args[-1] == 60

    def test_context_manager_releases_on_error(self, mock_redis):
        with pytest.raises(ValueError):
            with DistributedLock("settlements:test", blocking=False):
                raise ValueError("boom")

        mock_redis.eval.assert_called_once()


class TestTransactionLock:
    def test_key_and_settings(self, settings):
        settings.SETTLEMENTS_TRANSACTION_LOCK_TTL = 45
        settings.SETTLEMENTS_TRANSACTION_LOCK_TIMEOUT = 2.5
        txn_id = uuid.uuid4()

        lock = transaction_lock(txn_id, blocking=False)

        assert lock.key == f"lock:settlements:transaction:{txn_id}"
        assert (lock.ttl, lock.timeout, lock.blocking) == (45, 2.5, False)

    def test_second_holder_is_refused_until_release(self, fake_redis):
        txn_id = uuid.uuid4()
        holder = transaction_lock(txn_id, blocking=False)
        holder.acquire()

        with pytest.raises(LockAcquisitionError):
            transaction_lock(txn_id, blocking=False).acquire()

        holder.release()
        assert transaction_lock(txn_id, blocking=False).acquire() is True


@pytest.mark.django_db
class TestRaiseForMissedWrite:
    def test_missing_record(self):
        with pytest.raises(TransactionNotFoundError):
            raise_for_missed_write(Transaction, uuid.uuid4(), expected_version=1)

    def test_version_mismatch(self, pending_transaction):
        with pytest.raises(StaleRecordError) as exc_info:
            raise_for_missed_write(Transaction, pending_transaction.pk, expected_version=4)

        assert exc_info.value.details == {
            "pk": str(pending_transaction.pk),
            "expected_version": 4,
            "current_version": 1,
        }
