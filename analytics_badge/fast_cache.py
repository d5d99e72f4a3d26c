from __future__ import annotations
"""
Fast cache backends.
Short-TTL key-value store consulted before the database on every badge request.
"""

import logging
import threading
import time
from typing import Dict, Iterable, Optional, Protocol, Tuple

import redis

from analytics_badge.errors import CacheError

logger = logging.getLogger(__name__)


class FastCache(Protocol):
    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        ...

    def delete_multi(self, keys: Iterable[str]) -> None:
        ...


class RedisCache:
    """Fast cache backed by Redis. Every backend failure surfaces as CacheError."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.Redis.from_url(url))

    def get(self, key: str) -> Optional[bytes]:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            raise CacheError(f"Redis GET {key} failed: {e}") from e

    def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        try:
            self.client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as e:
            raise CacheError(f"Redis SET {key} failed: {e}") from e

    def delete_multi(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        try:
            self.client.delete(*keys)
        except redis.RedisError as e:
            raise CacheError(f"Redis DEL of {len(keys)} key(s) failed: {e}") from e


class MemoryCache:
    """
    In-process fast cache with per-entry expiry.
    Suitable for a single worker; entries are not shared between processes.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def delete_multi(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)


def cache_from_url(url: str) -> FastCache:
    """Redis when a URL is configured, otherwise the in-process cache."""
    if url:
        logger.info("[CACHE] Using Redis fast cache")
        return RedisCache.from_url(url)
    logger.info("[CACHE] REDIS_URL empty, using in-process fast cache")
    return MemoryCache()
