"""
Tests for the refund and recurring batch locks.

Redis is the autouse mock_redis fixture from payments/conftest.py.
"""

import pytest

from payments.exceptions import LockAcquisitionError
from payments.locks import DistributedLock, recurring_batch_lock, refund_lock


class TestDistributedLock:
    def test_acquire_sets_key_with_ttl(self, mock_redis):
        lock = DistributedLock("refund:PF-1", ttl=30, blocking=False)

        assert lock.acquire() is True

        key, token = mock_redis.set.call_args[0]
        assert key == "lock:refund:PF-1"
        assert token == lock._token
        assert mock_redis.set.call_args[1] == {"nx": True, "ex": 30}
        assert lock.is_held is True

    def test_each_acquisition_gets_its_own_token(self, mock_redis):
        first = DistributedLock("a", blocking=False)
        second = DistributedLock("b", blocking=False)

        first.acquire()
        second.acquire()

        assert first._token != second._token

    def test_non_blocking_fails_fast(self, mock_redis):
        mock_redis.set.return_value = False
        lock = DistributedLock("payments:recurring-batch", blocking=False)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert "already held" in exc_info.value.message
        assert exc_info.value.error_code == "LOCK_ACQUISITION_FAILED"
        assert lock.is_held is False

    def test_blocking_polls_until_free(self, mock_redis, mocker):
        mocker.patch("payments.locks.time.sleep")
        mock_redis.set.side_effect = [False, False, True]

        assert DistributedLock("refund:PF-1", timeout=5).acquire() is True
        assert mock_redis.set.call_count == 3

    def test_blocking_gives_up_after_timeout(self, mock_redis):
        mock_redis.set.return_value = False

        with pytest.raises(LockAcquisitionError) as exc_info:
            DistributedLock("refund:PF-1", timeout=0.1).acquire()

        assert "within 0.1s" in exc_info.value.message
        assert exc_info.value.details == {"key": "lock:refund:PF-1", "timeout": 0.1}

    def test_release_runs_owner_script(self, mock_redis):
        lock = DistributedLock("refund:PF-1", blocking=False)
        lock.acquire()
        token = lock._token

        assert lock.release() is True

        script, num_keys, key, sent_token = mock_redis.eval.call_args[0]
        assert script == DistributedLock.RELEASE_SCRIPT
        assert (num_keys, key, sent_token) == (1, "lock:refund:PF-1", token)
        assert lock.is_held is False

    def test_release_of_expired_lock(self, mock_redis):
        mock_redis.eval.return_value = 0
        lock = DistributedLock("refund:PF-1", blocking=False)
        lock.acquire()

        assert lock.release() is False

    def test_release_without_acquire_is_noop(self, mock_redis):
        assert DistributedLock("x").release() is False
        mock_redis.eval.assert_not_called()

    def test_context_manager_releases_on_error(self, mock_redis):
        with pytest.raises(ValueError, match="provider exploded"):
            with DistributedLock("refund:PF-1"):
                raise ValueError("provider exploded")

        mock_redis.eval.assert_called_once()


class TestNamedLocks:
    def test_refund_lock_blocks_per_reference(self, settings):
        settings.PAYMENT_REFUND_LOCK_TTL = 45

        lock = refund_lock("PF-1700000000-ABC123")

        assert lock.key == "lock:refund:PF-1700000000-ABC123"
        assert lock.blocking is True
        assert lock.ttl == 45

    def test_recurring_batch_lock_is_non_blocking(self, settings):
        settings.PAYMENT_RECURRING_LOCK_TTL = 600

        lock = recurring_batch_lock()

        assert lock.key == "lock:payments:recurring-batch"
        assert lock.blocking is False
        assert lock.ttl == 600

