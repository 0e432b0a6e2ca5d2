"""In-memory implementation of the key-value storage."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from ..constants import DEFAULT_STORAGE_NAMESPACE
from ..errors import PersistenceFailure
from .base import KeyValueStorage


class InMemoryStorage(KeyValueStorage):
    """Store values in local memory.

    Useful for tests or when no storage is configured. Values are kept in
    their serialized form so callers never share mutable objects with the
    store, and nothing survives a process restart.
    """

    def __init__(self, namespace: str = DEFAULT_STORAGE_NAMESPACE) -> None:
        self.namespace = namespace
        self._data: Dict[str, str] = {}

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(self._key(key))
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        try:
            self._data[self._key(key)] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise PersistenceFailure(f"Cannot serialize value for {key}: {exc}") from exc

    async def remove(self, key: str) -> None:
        self._data.pop(self._key(key), None)

    def keys(self) -> list[str]:
        prefix = len(self.namespace)
        return [k[prefix:] for k in self._data]
