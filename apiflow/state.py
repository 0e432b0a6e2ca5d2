"""Keyed state snapshots with structural diffing."""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Dict, Mapping, Optional, Protocol

from .constants import DEFAULT_STATE_KEY
from .contracts import HttpResponse, StateDiff, ValueChange
from .errors import ApiflowError
from .http import HttpExecutor
from .observers import StateObserver
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)


def _serialized(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def compute_diff(old: Mapping[str, Any], new: Mapping[str, Any]) -> StateDiff:
    """Classify every key as added, updated or removed.

    Values are compared by their serialized form, so key order inside
    nested objects is not a change. Unchanged keys are omitted.
    """
    diff = StateDiff()
    for key, value in new.items():
        if key not in old:
            diff.added[key] = value
        elif _serialized(old[key]) != _serialized(value):
            diff.updated[key] = ValueChange(from_=old[key], to=value)
    for key, value in old.items():
        if key not in new:
            diff.removed[key] = value
    return diff


class StateProvider(Protocol):
    """External source of the full state mapping."""

    async def fetch_state(self) -> Dict[str, Any]:
        """Return the current state."""


class HttpStateProvider:
    """Fetch state from an HTTP endpoint through an :class:`HttpExecutor`."""

    def __init__(self, executor: HttpExecutor, url: str) -> None:
        self.executor = executor
        self.url = url

    async def fetch_state(self) -> Dict[str, Any]:
        response = await self.executor.execute("GET", self.url)
        if not response.ok:
            raise ApiflowError(f"State source returned HTTP {response.status}")
        body = response.body
        if not isinstance(body, dict):
            raise ApiflowError("State source did not return a JSON object")
        for key in ("entity", "state"):
            if isinstance(body.get(key), dict):
                return body[key]
        return body


class StateSnapshotEngine:
    """Holds a keyed state map and tracks the diff of every mutation.

    When diffing is enabled each mutation copies the state into
    ``previous_state`` first, then computes ``last_diff`` and publishes the
    new state together with the diff to the observer.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        *,
        provider: Optional[StateProvider] = None,
        observer: Optional[StateObserver] = None,
        persist: bool = True,
        diff_enabled: bool = True,
        storage_key: str = DEFAULT_STATE_KEY,
    ) -> None:
        self._storage = storage
        self.provider = provider
        self.observer = observer
        self.persist = persist
        self.diff_enabled = diff_enabled
        self.storage_key = storage_key
        self.state: Dict[str, Any] = {}
        self.previous_state: Dict[str, Any] = {}
        self.last_diff: Optional[StateDiff] = None

    # ------------------------------------------------------------------
    # Persistence
    async def load(self) -> None:
        if not self.persist or self._storage is None:
            return
        try:
            stored = await self._storage.get(self.storage_key)
        except Exception as exc:
            logger.error(f"Failed to load state: {exc}")
            return
        if isinstance(stored, dict):
            self.state = stored
            logger.debug(f"Loaded {len(self.state)} state keys from storage")

    async def _save(self) -> None:
        if not self.persist or self._storage is None:
            return
        try:
            await self._storage.set(self.storage_key, self.state)
        except Exception as exc:
            logger.error(f"Failed to save state: {exc}")

    # ------------------------------------------------------------------
    # Bookkeeping
    def _begin(self) -> None:
        if self.diff_enabled:
            self.previous_state = copy.deepcopy(self.state)

    def _publish(self) -> None:
        diff = compute_diff(self.previous_state, self.state) if self.diff_enabled else None
        self.last_diff = diff
        if self.observer is not None:
            self.observer.update_state(self.snapshot(), diff)

    # ------------------------------------------------------------------
    # Accessors
    def get_state(self, key: str, default: Any = None) -> Any:
        return self.state.get(key, default)

    def get_all_state(self) -> Dict[str, Any]:
        return dict(self.state)

    def has_state(self, key: str) -> bool:
        return key in self.state

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self.state)

    # ------------------------------------------------------------------
    # Mutations
    async def set_state(self, key: str, value: Any, persist: bool = True) -> None:
        self._begin()
        self.state[key] = value
        self._publish()
        if persist:
            await self._save()

    async def remove_state(self, key: str, persist: bool = True) -> bool:
        if key not in self.state:
            return False
        self._begin()
        del self.state[key]
        self._publish()
        if persist:
            await self._save()
        return True

    async def clear_state(self, persist: bool = True) -> None:
        self._begin()
        self.state = {}
        self._publish()
        if persist:
            await self._save()

    async def fetch_from_source(self) -> Dict[str, Any]:
        """Replace the whole state with the provider's data."""
        if self.provider is None:
            raise ApiflowError("No state provider configured")
        data = await self.provider.fetch_state()
        self._begin()
        self.state = dict(data)
        self._publish()
        await self._save()
        logger.info(f"Fetched {len(self.state)} state keys from source")
        return self.get_all_state()

    async def update_from_response(
        self, response: Any, state_key: Optional[str] = None
    ) -> bool:
        """Apply state carried by a response body.

        Sets ``state_key`` when it is a top-level property of the body;
        otherwise merges a nested ``state`` mapping. Returns whether the
        state changed.
        """
        body = response.body if isinstance(response, HttpResponse) else response
        if not isinstance(body, Mapping):
            return False

        if state_key and state_key in body:
            await self.set_state(state_key, body[state_key])
            return True

        nested = body.get("state")
        if isinstance(nested, Mapping):
            self._begin()
            self.state.update(nested)
            self._publish()
            await self._save()
            return True
        return False
