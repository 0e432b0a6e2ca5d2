"""Key-value storage abstraction used by every persisted component."""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class KeyValueStorage(Protocol):
    """Protocol for storage backends.

    Values are JSON-serializable. Backends namespace keys themselves and
    raise :class:`~apiflow.errors.PersistenceFailure` when the underlying
    store cannot be read or written.
    """

    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value or ``None`` when absent."""

    async def set(self, key: str, value: Any) -> None:
        """Persist ``value`` under ``key``."""

    async def remove(self, key: str) -> None:
        """Delete ``key`` if present."""
