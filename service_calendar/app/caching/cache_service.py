"""
Cache-aside wrapper over a key-value store.
"""

import json
from typing import Any, Awaitable, Callable, Optional, Union

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .kv_store import KeyValueStore


class CacheTTL:
    """Expiry presets in seconds."""
    SHORT = 60
    MEDIUM = 300
    LONG = 3600
    VERY_LONG = 86400


class CacheKeys:
    """Key builders for cached lookups."""

    USERS_PREFIX = "users"
    USERS_ALL = "all"

    @staticmethod
    def user_by_id(user_id: Union[int, str]) -> str:
        return f"user:{user_id}"

    @staticmethod
    def user_by_email(email: str) -> str:
        return f"user:email:{email}"


class CacheService:
    """Cache-aside access to a key-value store.

    Every operation degrades to a no-op when no store is configured, and
    store errors are logged rather than raised: a cache problem must never
    fail the request that consulted the cache.
    """

    def __init__(self, kv: Optional[KeyValueStore], default_ttl: int = CacheTTL.MEDIUM,
                 metrics: Optional[MetricsCollector] = None):
        self.kv = kv
        self.default_ttl = default_ttl
        self.metrics = metrics
        self.logger = get_logger("calendar.cache")

    @property
    def available(self) -> bool:
        return self.kv is not None

    @staticmethod
    def _key(key: str, prefix: Optional[str] = None) -> str:
        return f"{prefix}:{key}" if prefix else key

    def _record(self, prefix: Optional[str], hit: bool):
        if self.metrics:
            self.metrics.record_cache_access(prefix or "default", hit)

    async def get(self, key: str, prefix: Optional[str] = None) -> Optional[Any]:
        if self.kv is None:
            return None

        full_key = self._key(key, prefix)
        try:
            value = await self.kv.get(full_key, format="json")
        except Exception as e:
            self.logger.error("Cache get error", key=full_key, error=str(e))
            return None

        self._record(prefix, value is not None)
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None,
                  prefix: Optional[str] = None) -> bool:
        if self.kv is None:
            return False

        full_key = self._key(key, prefix)
        try:
            await self.kv.put(full_key, json.dumps(value), expiration_ttl=ttl or self.default_ttl)
        except Exception as e:
            self.logger.error("Cache set error", key=full_key, error=str(e))
            return False
        return True

    async def delete(self, key: str, prefix: Optional[str] = None) -> bool:
        if self.kv is None:
            return False

        full_key = self._key(key, prefix)
        try:
            await self.kv.delete(full_key)
        except Exception as e:
            self.logger.error("Cache delete error", key=full_key, error=str(e))
            return False
        return True

    async def get_or_set(self, key: str, producer: Callable[[], Awaitable[Any]],
                         ttl: Optional[int] = None, prefix: Optional[str] = None) -> Any:
        """Return the cached value, or produce, store and return it.

        The producer's own errors propagate; only store errors are absorbed.
        """
        cached = await self.get(key, prefix)
        if cached is not None:
            return cached

        value = await producer()
        await self.set(key, value, ttl, prefix)
        return value

    async def invalidate_user_cache(self, user_id: Union[int, str]):
        await self.delete(CacheKeys.user_by_id(user_id), CacheKeys.USERS_PREFIX)
        await self.delete(CacheKeys.USERS_ALL, CacheKeys.USERS_PREFIX)

    async def invalidate_all_users_cache(self):
        await self.delete(CacheKeys.USERS_ALL, CacheKeys.USERS_PREFIX)
