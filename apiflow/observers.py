"""Observer interfaces for flow runs and state changes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol

if TYPE_CHECKING:
    from .contracts import FlowRunResult, StateDiff, Step, StepResult


class FlowRunObserver(Protocol):
    """Receives progress notifications while a flow runs."""

    def step_started(self, index: int, step: "Step") -> None: ...

    def step_skipped(self, index: int, step: "Step") -> None: ...

    def step_completed(self, index: int, step: "Step", result: "StepResult") -> None: ...

    def run_finished(self, result: "FlowRunResult") -> None: ...


class StateObserver(Protocol):
    """Receives the state and its diff after every state mutation."""

    def update_state(self, state: Dict[str, Any], diff: Optional["StateDiff"]) -> None: ...


class NullRunObserver:
    """Run observer that ignores every notification."""

    def step_started(self, index: int, step: "Step") -> None:
        pass

    def step_skipped(self, index: int, step: "Step") -> None:
        pass

    def step_completed(self, index: int, step: "Step", result: "StepResult") -> None:
        pass

    def run_finished(self, result: "FlowRunResult") -> None:
        pass
