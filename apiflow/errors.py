"""Exception types raised by the apiflow core."""

from __future__ import annotations

from typing import Optional


class ApiflowError(Exception):
    """Base class for all apiflow errors."""


class MissingRequiredVariable(ApiflowError):
    """A required extraction rule did not resolve to a value."""

    def __init__(self, name: str, path: str) -> None:
        self.name = name
        self.path = path
        super().__init__(f"Required variable '{name}' not found at path '{path}'")


class TransportError(ApiflowError):
    """The HTTP call itself failed (network error, timeout, ...)."""


class StepExecutionFailure(ApiflowError):
    """A flow step could not be resolved or executed."""

    def __init__(
        self, step_index: int, step_id: str, cause: Optional[BaseException] = None
    ) -> None:
        self.step_index = step_index
        self.step_id = step_id
        self.cause = cause
        super().__init__(f"Step {step_index} ({step_id}) failed: {cause}")


class PersistenceFailure(ApiflowError):
    """The storage backend could not read or write a value."""


class ConditionError(ApiflowError):
    """A skip condition could not be parsed or evaluated."""


class FlowNotFound(ApiflowError, LookupError):
    """No flow exists with the requested id."""

    def __init__(self, flow_id: str) -> None:
        self.flow_id = flow_id
        super().__init__(f"Flow not found: {flow_id}")
