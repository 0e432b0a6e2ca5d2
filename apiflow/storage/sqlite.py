"""SQLite implementation of the key-value storage."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any, Optional

from ..constants import DEFAULT_STORAGE_NAMESPACE
from ..errors import PersistenceFailure
from .base import KeyValueStorage


class SQLiteStorage(KeyValueStorage):
    """Persist values as JSON text in a single SQLite table."""

    def __init__(
        self, db_path: str | Path, namespace: str = DEFAULT_STORAGE_NAMESPACE
    ) -> None:
        self.db_path = str(db_path)
        self.namespace = namespace
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    # ------------------------------------------------------------------
    # Storage API
    async def get(self, key: str) -> Optional[Any]:
        try:
            row = await asyncio.to_thread(
                self._fetchone,
                "SELECT value FROM kv_store WHERE key = ?",
                self._key(key),
            )
            return json.loads(row["value"]) if row else None
        except (sqlite3.Error, json.JSONDecodeError) as exc:
            raise PersistenceFailure(f"Failed to read {key}: {exc}") from exc

    async def set(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value)
            await asyncio.to_thread(
                self._execute,
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                self._key(key),
                payload,
            )
        except (sqlite3.Error, TypeError, ValueError) as exc:
            raise PersistenceFailure(f"Failed to write {key}: {exc}") from exc

    async def remove(self, key: str) -> None:
        try:
            await asyncio.to_thread(
                self._execute, "DELETE FROM kv_store WHERE key = ?", self._key(key)
            )
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"Failed to remove {key}: {exc}") from exc

    def close(self) -> None:
        self._conn.close()
