"""
OAuth access-token caching for gateways that use client credentials.

The cache is injected into adapters by the registry. The default stores
tokens in the Django cache (Redis in production), so every worker shares
one token per gateway and mode. Two workers refreshing at the same time
both fetch a token and the later write wins; providers allow several live
tokens, so no lock is taken.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from django.conf import settings
from django.core.cache import cache as default_cache

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@runtime_checkable
class TokenCache(Protocol):
    """Cache-aside store for bearer tokens."""

    def get_or_fetch(self, key: str, fetcher: Callable[[], tuple[str, int]]) -> str:
        """Return the cached token for key, calling fetcher() on a miss."""
        ...

    def invalidate(self, key: str) -> None:
        ...


class DjangoCacheTokenCache:
    """
    TokenCache backed by a Django cache alias.

    Args:
        cache: Cache instance (defaults to django.core.cache.cache)
        buffer_seconds: Tokens are kept for expires_in - buffer_seconds
        prefix: Cache key prefix
    """

    def __init__(self, cache=None, buffer_seconds: int | None = None, prefix: str = "payments:token"):
        self.cache = cache or default_cache
        if buffer_seconds is None:
            buffer_seconds = getattr(settings, "PAYMENT_TOKEN_CACHE_BUFFER_SECONDS", 60)
        self.buffer_seconds = buffer_seconds
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get_or_fetch(self, key: str, fetcher: Callable[[], tuple[str, int]]) -> str:
        cache_key = self._key(key)
        token = self.cache.get(cache_key)
        if token:
            return token

        token, expires_in = fetcher()
        ttl = max(int(expires_in) - self.buffer_seconds, 1)
        self.cache.set(cache_key, token, timeout=ttl)
        logger.info("Cached gateway access token", extra={"key": key, "ttl": ttl})
        return token

    def invalidate(self, key: str) -> None:
        self.cache.delete(self._key(key))

