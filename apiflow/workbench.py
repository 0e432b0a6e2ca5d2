"""Composition root wiring storage, executor, variables, history, flows and state."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .config import ApiflowConfig, load_config
from .contracts import FlowRunResult, StateDiff
from .flows import CancelToken, FlowEngine
from .history import HistoryLog
from .http import HttpExecutor, HttpxExecutor
from .observers import FlowRunObserver, StateObserver
from .state import HttpStateProvider, StateSnapshotEngine, compute_diff
from .storage import KeyValueStorage, get_storage
from .variables import VariableStore, VariableSyntax

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """Run result plus the state diff observed across the run."""

    result: Optional[FlowRunResult]
    diff: Optional[StateDiff] = None


@dataclass
class Workbench:
    storage: KeyValueStorage
    executor: HttpExecutor
    variables: VariableStore
    history: HistoryLog
    flows: FlowEngine
    state: StateSnapshotEngine

    @classmethod
    async def from_config(
        cls,
        config: Optional[ApiflowConfig] = None,
        storage: Optional[KeyValueStorage] = None,
        executor: Optional[HttpExecutor] = None,
        *,
        run_observer: Optional[FlowRunObserver] = None,
        state_observer: Optional[StateObserver] = None,
    ) -> "Workbench":
        """Build every component from ``config`` and load persisted data."""
        config = config or load_config()
        storage = storage or get_storage(config=config)
        executor = executor or HttpxExecutor(
            base_url=config.http.base_url,
            timeout=config.http.timeout,
            default_headers=config.http.headers,
        )

        variables = VariableStore(
            storage,
            syntax=VariableSyntax(
                prefix=config.variables.prefix,
                suffix=config.variables.suffix,
                json_path_indicator=config.variables.json_path_indicator,
            ),
            persist=config.variables.persist,
            storage_key=config.variables.storage_key,
            strict_json_path=config.variables.strict_json_path,
        )
        history = HistoryLog(
            storage,
            max_entries=config.history.max_entries,
            persist=config.history.persist,
            storage_key=config.history.storage_key,
        )
        flows = FlowEngine(
            variables,
            history,
            executor,
            storage,
            observer=run_observer,
            storage_key=config.flows.storage_key,
            seed_default=config.flows.seed_default,
        )
        provider = (
            HttpStateProvider(executor, config.state.source_url)
            if config.state.source_url
            else None
        )
        state = StateSnapshotEngine(
            storage,
            provider=provider,
            observer=state_observer,
            persist=config.state.persist,
            diff_enabled=config.state.diff_enabled,
            storage_key=config.state.storage_key,
        )

        await variables.load()
        await history.load()
        await flows.load()
        await state.load()
        logger.debug("Workbench initialised")
        return cls(storage, executor, variables, history, flows, state)

    async def _capture(self) -> dict:
        if self.state.provider is not None:
            return await self.state.fetch_from_source()
        return self.state.snapshot()

    async def run_flow(
        self,
        flow_id: Optional[str] = None,
        snapshot: bool = False,
        cancel_token: Optional[CancelToken] = None,
    ) -> RunReport:
        """Run a flow, optionally diffing the state before and after it."""
        before = await self._capture() if snapshot else None
        result = await self.flows.run(flow_id, cancel_token=cancel_token)
        if before is None or result is None:
            return RunReport(result)
        after = await self._capture()
        diff = compute_diff(before, after)
        logger.info(
            f"State diff: {len(diff.added)} added, {len(diff.updated)} updated, {len(diff.removed)} removed"
        )
        return RunReport(result, diff)

    async def aclose(self) -> None:
        aclose = getattr(self.executor, "aclose", None)
        if aclose is not None:
            await aclose()
