"""Redis implementation of the key-value storage."""

from __future__ import annotations

import json
from typing import Any, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..constants import DEFAULT_STORAGE_NAMESPACE
from ..errors import PersistenceFailure
from .base import KeyValueStorage


class RedisStorage(KeyValueStorage):
    """Redis-backed storage for sharing state between processes."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        namespace: str = DEFAULT_STORAGE_NAMESPACE,
        client: Optional[Any] = None,
    ) -> None:
        if redis is None and client is None:
            raise ImportError("redis package is required for RedisStorage")

        self.url = url
        self.namespace = namespace
        self._redis: Optional[Any] = client

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.from_url(self.url, decode_responses=True)
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def get(self, key: str) -> Optional[Any]:
        try:
            if not self._redis:
                await self.connect()
            raw = await self._redis.get(self._key(key))
            return json.loads(raw) if raw is not None else None
        except Exception as exc:
            raise PersistenceFailure(f"Failed to read {key}: {exc}") from exc

    async def set(self, key: str, value: Any) -> None:
        try:
            if not self._redis:
                await self.connect()
            await self._redis.set(self._key(key), json.dumps(value))
        except Exception as exc:
            raise PersistenceFailure(f"Failed to write {key}: {exc}") from exc

    async def remove(self, key: str) -> None:
        try:
            if not self._redis:
                await self.connect()
            await self._redis.delete(self._key(key))
        except Exception as exc:
            raise PersistenceFailure(f"Failed to remove {key}: {exc}") from exc
