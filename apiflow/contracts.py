"""Data contracts for flows, steps, history and state diffs."""

from __future__ import annotations

import random
import string
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_serializer
from pydantic.alias_generators import to_camel

from .constants import DEFAULT_CATEGORY


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def _base36(number: int) -> str:
    digits = string.digits + string.ascii_lowercase
    if number == 0:
        return "0"
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out


def generate_id(prefix: str = "f") -> str:
    """Generate an id like ``f_k3j9x1a_lz8q2m4``."""
    token = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"{prefix}_{token}_{_base36(now_ms())}"


class ApiModel(BaseModel):
    """Base model using camelCase aliases for the persisted form."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ExtractionRule(ApiModel):
    """Copy a value from a response body into a variable."""

    name: str
    path: str
    description: Optional[str] = None
    required: bool = False
    default_value: Any = None

    @property
    def has_default(self) -> bool:
        return "default_value" in self.model_fields_set

    @model_serializer(mode="wrap")
    def _drop_unset_default(self, handler):
        data = handler(self)
        if not self.has_default:
            data.pop("defaultValue", None)
            data.pop("default_value", None)
        return data


class Step(ApiModel):
    """One HTTP call within a flow."""

    id: str = Field(default_factory=generate_id)
    name: str = "New Step"
    description: Optional[str] = None
    method: str = "GET"
    url: str = ""
    headers: Optional[Dict[str, str]] = None
    params: Optional[Dict[str, Any]] = None
    body: Any = None
    delay: Optional[float] = Field(
        default=None, description="Pause after the step, in milliseconds"
    )
    skip_if: Optional[str] = None
    extract_variables: Optional[List[ExtractionRule]] = None
    endpoint: Optional[str] = None


class Flow(ApiModel):
    """Ordered, named sequence of steps."""

    id: str = Field(default_factory=generate_id)
    name: str
    description: str = ""
    steps: List[Step] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    tags: Optional[List[str]] = None

    def get_step(self, step_id: str) -> Optional[Step]:
        return next((s for s in self.steps if s.id == step_id), None)

    def touch(self) -> None:
        self.updated_at = now_ms()


class Endpoint(ApiModel):
    """Catalog record describing one API endpoint."""

    id: Optional[str] = None
    method: str = "GET"
    path: str
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    tag: Optional[str] = None
    parameters: List[Any] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    @property
    def group(self) -> str:
        return self.category or self.tag or DEFAULT_CATEGORY


class HttpRequest(ApiModel):
    """Fully resolved request as sent to the executor."""

    method: str = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    params: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None


class HttpResponse(ApiModel):
    """Normalized response returned by an HTTP executor."""

    status: int
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HistoryRequest(ApiModel):
    headers: Dict[str, str] = Field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    body: Any = None


class HistoryResponse(ApiModel):
    headers: Dict[str, str] = Field(default_factory=dict)
    data: Any = None
    size: int = 0


class HistoryEntry(ApiModel):
    """Record of one executed HTTP call."""

    id: str = Field(default_factory=lambda: generate_id("h"))
    timestamp: int = Field(default_factory=now_ms)
    method: str
    path: str
    url: str
    status: int
    success: bool
    duration: float
    request: HistoryRequest = Field(default_factory=HistoryRequest)
    response: HistoryResponse = Field(default_factory=HistoryResponse)


class ValueChange(BaseModel):
    """Old and new value of an updated state key."""

    model_config = ConfigDict(populate_by_name=True)

    from_: Any = Field(default=None, alias="from")
    to: Any = None


class StateDiff(BaseModel):
    """Structural delta between two state snapshots."""

    added: Dict[str, Any] = Field(default_factory=dict)
    updated: Dict[str, ValueChange] = Field(default_factory=dict)
    removed: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.updated or self.removed)


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


class StepResult(BaseModel):
    """Outcome of one executed step inside a run."""

    step_id: str
    index: int
    request: HttpRequest
    response: HttpResponse
    extracted: Dict[str, Any] = Field(default_factory=dict)
    extraction_error: Optional[str] = None


class FlowRunResult(BaseModel):
    """Summary of a flow run reported to the caller."""

    flow_id: str
    status: RunStatus = RunStatus.RUNNING
    executed: List[StepResult] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    failed_step_index: Optional[int] = None
    started_at: int = Field(default_factory=now_ms)
    finished_at: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.COMPLETED
