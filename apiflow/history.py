"""Bounded request/response history."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlsplit

from .constants import DEFAULT_HISTORY_KEY, DEFAULT_HISTORY_MAX_ENTRIES
from .contracts import (
    HistoryEntry,
    HistoryRequest,
    HistoryResponse,
    HttpRequest,
    HttpResponse,
)
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)


def _path_of(url: str) -> str:
    try:
        path = urlsplit(url).path
    except ValueError:
        return url
    return path or url


def _lower_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    return {str(k).lower(): str(v) for k, v in (headers or {}).items()}


def _size_of(data: Any) -> int:
    if data is None:
        return 0
    if isinstance(data, str):
        return len(data)
    try:
        return len(json.dumps(data, separators=(",", ":")))
    except (TypeError, ValueError):
        return 0


class HistoryLog:
    """Most-recent-first log of executed calls, capped at ``max_entries``."""

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        *,
        max_entries: int = DEFAULT_HISTORY_MAX_ENTRIES,
        persist: bool = True,
        storage_key: str = DEFAULT_HISTORY_KEY,
    ) -> None:
        self._storage = storage
        self.max_entries = max(1, max_entries)
        self.persist = persist
        self.storage_key = storage_key
        self._entries: List[HistoryEntry] = []

    async def load(self) -> None:
        if not self.persist or self._storage is None:
            return
        try:
            stored = await self._storage.get(self.storage_key)
            if isinstance(stored, list):
                self._entries = [HistoryEntry.model_validate(e) for e in stored]
                self._entries = self._entries[: self.max_entries]
        except Exception as exc:
            logger.error(f"Failed to load history: {exc}")
            self._entries = []

    async def _save(self) -> None:
        if not self.persist or self._storage is None:
            return
        try:
            await self._storage.set(
                self.storage_key, [e.to_storage() for e in self._entries]
            )
        except Exception as exc:
            # Degrade to memory-only history for the rest of the session.
            logger.error(f"Failed to save history, continuing in memory: {exc}")
            self.persist = False

    async def add_entry(
        self, request: HttpRequest, response: HttpResponse
    ) -> HistoryEntry:
        """Record a call and evict the oldest entries beyond the cap."""
        entry = HistoryEntry(
            method=request.method.upper(),
            path=_path_of(request.url),
            url=request.url,
            status=response.status,
            success=response.ok,
            duration=response.elapsed_ms,
            request=HistoryRequest(
                headers=_lower_headers(request.headers),
                params=request.params or None,
                body=request.body,
            ),
            response=HistoryResponse(
                headers=_lower_headers(response.headers),
                data=response.body,
                size=_size_of(response.body),
            ),
        )
        self._entries.insert(0, entry)
        if len(self._entries) > self.max_entries:
            del self._entries[self.max_entries :]
        await self._save()
        return entry

    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get_entry(self, entry_id: str) -> Optional[HistoryEntry]:
        return next((e for e in self._entries if e.id == entry_id), None)

    async def delete_entry(self, entry_id: str) -> bool:
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.id != entry_id]
        if len(self._entries) == before:
            return False
        await self._save()
        return True

    async def clear(self) -> None:
        self._entries = []
        await self._save()
