"""
Redis locks for payment work that spans provider calls.

Row locks (select_for_update in TransactionStore) serialize single status
updates. The locks here cover multi-step work that talks to a provider
between database writes: refunds for one reference, and the recurring
billing batch.

Usage:
    from payments.locks import refund_lock

    with refund_lock(reference):
        gateway.refund_payment(...)
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import TYPE_CHECKING

from django.conf import settings
from django_redis import get_redis_connection

from payments.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

logger = logging.getLogger(__name__)


class DistributedLock:
    """
    Redis key whose value is a random owner token.

    SET NX EX takes the key; release deletes it through a Lua check so an
    expired lock re-taken by another worker is left alone. The TTL frees
    keys left by crashed workers.

    Blocking locks poll until timeout seconds have passed; non-blocking
    locks fail on the first refusal. Either way failure raises
    LockAcquisitionError, which views answer with 409.
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    POLL_INTERVAL = 0.05
    KEY_PREFIX = "lock:"

    def __init__(self, key: str, ttl: int = 30, blocking: bool = True, timeout: float = 10.0) -> None:
        self.key = self.KEY_PREFIX + key
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._client: Redis | None = None

    @property
    def redis(self) -> Redis:
        if self._client is None:
            self._client = get_redis_connection("default")
        return self._client

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def acquire(self) -> bool:
        """Take the lock or raise LockAcquisitionError. Returns True."""
        token = uuid.uuid4().hex
        if self.blocking:
            deadline = time.monotonic() + self.timeout
            while not self._set(token):
                if time.monotonic() >= deadline:
                    raise LockAcquisitionError(
                        f"Could not take lock '{self.key}' within {self.timeout}s",
                        details={"key": self.key, "timeout": self.timeout},
                    )
                time.sleep(self.POLL_INTERVAL)
        elif not self._set(token):
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )

        self._token = token
        return True

    def _set(self, token: str) -> bool:
        return bool(self.redis.set(self.key, token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """Delete the key if this instance still owns it. Repeat calls return False."""
        token, self._token = self._token, None
        if token is None:
            return False

        released = bool(self.redis.eval(self.RELEASE_SCRIPT, 1, self.key, token))
        if not released:
            logger.warning("Lock expired before release", extra={"key": self.key})
        return released

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb: Any) -> bool:
        self.release()
        return False


def refund_lock(reference: str) -> DistributedLock:
    """Lock serializing refunds against one transaction reference."""
    return DistributedLock(
        f"refund:{reference}",
        ttl=getattr(settings, "PAYMENT_REFUND_LOCK_TTL", 60),
        blocking=True,
        timeout=10.0,
    )


def recurring_batch_lock() -> DistributedLock:
    """Non-blocking lock so only one recurring billing run executes at a time."""
    return DistributedLock(
        "payments:recurring-batch",
        ttl=getattr(settings, "PAYMENT_RECURRING_LOCK_TTL", 900),
        blocking=False,
    )


__all__ = [
    "DistributedLock",
    "recurring_batch_lock",
    "refund_lock",
]
