"""apiflow: variable-driven HTTP flows with state snapshots and diffs."""

from .config import ApiflowConfig, load_config
from .conditions import evaluate_condition
from .contracts import ExtractionRule, Flow, FlowRunResult, RunStatus, StateDiff, Step
from .errors import (
    ApiflowError,
    ConditionError,
    FlowNotFound,
    MissingRequiredVariable,
    PersistenceFailure,
    StepExecutionFailure,
    TransportError,
)
from .flows import CancelToken, FlowEngine
from .history import HistoryLog
from .http import HttpxExecutor
from .paths import NOT_FOUND, get_path, resolve_json_path, resolve_path
from .state import HttpStateProvider, StateSnapshotEngine, compute_diff
from .storage import get_storage
from .variables import VariableStore, VariableSyntax
from .workbench import RunReport, Workbench

__version__ = "0.1.0"
__all__ = [
    "ApiflowConfig",
    "load_config",
    "evaluate_condition",
    "ExtractionRule",
    "Flow",
    "FlowRunResult",
    "RunStatus",
    "StateDiff",
    "Step",
    "ApiflowError",
    "ConditionError",
    "FlowNotFound",
    "MissingRequiredVariable",
    "PersistenceFailure",
    "StepExecutionFailure",
    "TransportError",
    "CancelToken",
    "FlowEngine",
    "HistoryLog",
    "HttpxExecutor",
    "NOT_FOUND",
    "get_path",
    "resolve_json_path",
    "resolve_path",
    "HttpStateProvider",
    "StateSnapshotEngine",
    "compute_diff",
    "get_storage",
    "VariableStore",
    "VariableSyntax",
    "RunReport",
    "Workbench",
]
