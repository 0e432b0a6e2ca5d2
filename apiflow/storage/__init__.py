"""Storage backends for persisted flows, variables, history and state."""

from __future__ import annotations

from typing import Optional

from ..config import ApiflowConfig, load_config, parse_storage_url
from ..constants import DEFAULT_STORAGE_NAMESPACE
from .base import KeyValueStorage
from .inmemory import InMemoryStorage
from .sqlite import SQLiteStorage

_storage_instance: KeyValueStorage | None = None


def _create_storage(storage_url: Optional[str]) -> KeyValueStorage:
    if not storage_url:
        return InMemoryStorage()

    scheme, location = parse_storage_url(storage_url)
    if scheme == "memory":
        return InMemoryStorage(namespace=location or DEFAULT_STORAGE_NAMESPACE)
    if scheme == "sqlite":
        return SQLiteStorage(location)

    from .redis import RedisStorage

    return RedisStorage(storage_url)


def get_storage(
    storage_url: Optional[str] = None, config: Optional[ApiflowConfig] = None
) -> KeyValueStorage:
    """Factory function to obtain a storage backend.

    ``storage_url`` takes one of these forms:

    - ``memory://`` or ``memory://<namespace>``: in-process store
    - ``sqlite://<path>``: SQLite database file
    - ``redis://...`` / ``rediss://...``: Redis server

    Without an explicit URL the configured one is used (``APIFLOW_STORAGE_URL``
    is already applied by :func:`load_config`), and without any URL an
    in-memory store is returned. Repeated calls without arguments reuse the
    last backend created.
    """

    global _storage_instance
    if _storage_instance is not None and storage_url is None and config is None:
        return _storage_instance

    if storage_url is None:
        storage_url = (config or load_config()).storage_url

    _storage_instance = _create_storage(storage_url)
    return _storage_instance


__all__ = [
    "KeyValueStorage",
    "InMemoryStorage",
    "SQLiteStorage",
    "get_storage",
]
