"""
Key-value stores backing the cache-aside service.
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from shared.errors import ServiceError
from shared.logging import get_logger


class KeyValueStore(ABC):
    """Minimal string key-value store with optional per-key expiry.

    ``get`` with ``format="json"`` decodes the stored text; ``format="text"``
    returns it untouched. Values passed to ``put`` are stored as given when
    they are strings and JSON-encoded otherwise.
    """

    @abstractmethod
    async def get(self, key: str, format: str = "text") -> Any:
        raise NotImplementedError

    @abstractmethod
    async def put(self, key: str, value: Any, expiration_ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError

    @staticmethod
    def _encode(value: Any) -> str:
        return value if isinstance(value, str) else json.dumps(value)

    @staticmethod
    def _decode(raw: Optional[str], format: str) -> Any:
        if raw is None:
            return None
        if format == "json":
            return json.loads(raw)
        return raw


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.logger = get_logger("calendar.kv.redis")
        self.redis: Optional[redis.Redis] = None

    def _connection(self) -> redis.Redis:
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
        return self.redis

    async def start(self):
        """Connect and verify the store is reachable."""
        try:
            await self._connection().ping()
            self.logger.info("Redis store started")
        except Exception as e:
            self.logger.error("Failed to start Redis store", error=str(e))
            raise ServiceError("Redis store unavailable", {"error": str(e)})

    async def stop(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis store stopped")

    async def ping(self) -> bool:
        return bool(await self._connection().ping())

    async def get(self, key: str, format: str = "text") -> Any:
        raw = await self._connection().get(key)
        return self._decode(raw, format)

    async def put(self, key: str, value: Any, expiration_ttl: Optional[int] = None) -> None:
        if expiration_ttl:
            await self._connection().setex(key, expiration_ttl, self._encode(value))
        else:
            await self._connection().set(key, self._encode(value))

    async def delete(self, key: str) -> None:
        await self._connection().delete(key)


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store for development and tests."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    async def get(self, key: str, format: str = "text") -> Any:
        item = self._data.get(key)
        if item is None:
            return None
        raw, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return self._decode(raw, format)

    async def put(self, key: str, value: Any, expiration_ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + expiration_ttl if expiration_ttl else None
        self._data[key] = (self._encode(value), expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._data)
