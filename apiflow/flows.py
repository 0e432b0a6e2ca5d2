"""Flow collection management and the flow execution engine."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel

from .conditions import evaluate_condition
from .constants import DEFAULT_FLOWS_KEY, GENERATED_FLOW_TAG
from .contracts import (
    Endpoint,
    Flow,
    FlowRunResult,
    HttpRequest,
    HttpResponse,
    RunStatus,
    Step,
    StepResult,
    now_ms,
)
from .errors import (
    ApiflowError,
    ConditionError,
    FlowNotFound,
    MissingRequiredVariable,
    StepExecutionFailure,
)
from .history import HistoryLog
from .http import HttpExecutor
from .observers import FlowRunObserver, NullRunObserver
from .storage import KeyValueStorage
from .variables import VariableStore

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class CancelToken:
    """Cooperative cancellation handle for a flow run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class RunCancelled(ApiflowError):
    """Raised inside a run when its cancel token fires."""


def _merge(model: ModelT, changes: Mapping[str, Any], model_cls: Type[ModelT]) -> ModelT:
    """Return a validated copy of ``model`` with ``changes`` applied.

    ``changes`` may use either field names or their camelCase aliases.
    """
    names = {}
    for name, field in model_cls.model_fields.items():
        names[name] = name
        if field.alias:
            names[field.alias] = name
    data = model.model_dump()
    for key, value in changes.items():
        data[names.get(key, key)] = value
    return model_cls.model_validate(data)


def _default_flow() -> Flow:
    return Flow(
        name="Default Flow",
        description="A default flow with basic API operations",
        steps=[
            Step(
                name="Get API Status",
                description="Check if the API is up and running",
                method="GET",
                url="/api/v1/health",
            )
        ],
    )


class FlowEngine:
    """Owns the flow collection and runs flows one step at a time.

    Steps run strictly in order. Variables extracted by one step are visible
    to the templates of every later step in the same run. Only one run may be
    active per engine; a second :meth:`run` call while running returns
    ``None`` without doing anything.
    """

    def __init__(
        self,
        variables: VariableStore,
        history: HistoryLog,
        executor: HttpExecutor,
        storage: Optional[KeyValueStorage] = None,
        *,
        observer: Optional[FlowRunObserver] = None,
        storage_key: str = DEFAULT_FLOWS_KEY,
        seed_default: bool = True,
    ) -> None:
        self.variables = variables
        self.history = history
        self.executor = executor
        self.observer: FlowRunObserver = observer or NullRunObserver()
        self.storage_key = storage_key
        self.seed_default = seed_default
        self._storage = storage
        self._flows: List[Flow] = []
        self._active_flow_id: Optional[str] = None
        self._running = False
        self._cancel_token: Optional[CancelToken] = None
        self.status = RunStatus.IDLE
        self.current_step_index = -1

    # ------------------------------------------------------------------
    # Persistence
    async def load(self) -> None:
        """Load stored flows, seeding a default flow when none exist."""
        loaded: Optional[List[Flow]] = None
        load_failed = False
        if self._storage is not None:
            try:
                stored = await self._storage.get(self.storage_key)
                if isinstance(stored, list):
                    loaded = [Flow.model_validate(f) for f in stored]
            except Exception as exc:
                logger.error(f"Failed to load flows: {exc}")
                load_failed = True

        if loaded is not None:
            self._flows = loaded
            logger.info(f"Loaded {len(self._flows)} flows from storage")
        elif self.seed_default and not load_failed:
            self._flows = [_default_flow()]
            await self._save()

        if self._active_flow_id is None and self._flows:
            self._active_flow_id = self._flows[0].id

    async def _save(self) -> None:
        if self._storage is None:
            return
        try:
            await self._storage.set(
                self.storage_key, [f.to_storage() for f in self._flows]
            )
            logger.debug(f"Saved {len(self._flows)} flows to storage")
        except Exception as exc:
            logger.error(f"Failed to save flows: {exc}")

    # ------------------------------------------------------------------
    # Collection management
    @property
    def flows(self) -> List[Flow]:
        return list(self._flows)

    @property
    def active_flow(self) -> Optional[Flow]:
        return self.get_flow(self._active_flow_id) if self._active_flow_id else None

    @property
    def is_running(self) -> bool:
        return self._running

    def get_flow(self, flow_id: str) -> Optional[Flow]:
        return next((f for f in self._flows if f.id == flow_id), None)

    def _require_flow(self, flow_id: Optional[str] = None) -> Flow:
        target = flow_id or self._active_flow_id
        flow = self.get_flow(target) if target else None
        if flow is None:
            raise FlowNotFound(target or "<no active flow>")
        return flow

    def _replace_flow(self, flow: Flow) -> None:
        for i, existing in enumerate(self._flows):
            if existing.id == flow.id:
                self._flows[i] = flow
                return

    def select_flow(self, flow_id: str) -> Flow:
        flow = self._require_flow(flow_id)
        self._active_flow_id = flow.id
        self.current_step_index = -1
        return flow

    async def create_flow(
        self,
        name: str = "New Flow",
        description: str = "A new API flow",
        steps: Optional[Iterable[Union[Step, Mapping[str, Any]]]] = None,
        tags: Optional[List[str]] = None,
    ) -> Flow:
        flow = Flow(
            name=name,
            description=description,
            steps=[s if isinstance(s, Step) else Step.model_validate(s) for s in steps or []],
            tags=tags,
        )
        return await self.add_flow(flow)

    async def add_flow(self, flow: Flow) -> Flow:
        if self.get_flow(flow.id) is not None:
            raise ValueError(f"Flow id already exists: {flow.id}")
        self._flows.append(flow)
        await self._save()
        logger.info(f"Added new flow: {flow.name}")
        return flow

    async def update_flow(self, flow_id: str, **changes: Any) -> Flow:
        flow = self._require_flow(flow_id)
        changes.pop("id", None)
        updated = _merge(flow, changes, Flow)
        updated.touch()
        self._replace_flow(updated)
        await self._save()
        logger.info(f"Updated flow: {updated.name}")
        return updated

    async def delete_flow(self, flow_id: str) -> bool:
        flow = self.get_flow(flow_id)
        if flow is None:
            logger.warning(f"Flow not found for deletion: {flow_id}")
            return False
        self._flows.remove(flow)
        if self._active_flow_id == flow_id:
            self._active_flow_id = self._flows[0].id if self._flows else None
            self.current_step_index = -1
        await self._save()
        logger.info(f"Deleted flow with ID: {flow_id}")
        return True

    async def add_step(
        self, step: Union[Step, Mapping[str, Any]], flow_id: Optional[str] = None
    ) -> Step:
        flow = self._require_flow(flow_id)
        new_step = step if isinstance(step, Step) else Step.model_validate(step)
        if flow.get_step(new_step.id) is not None:
            raise ValueError(f"Step id already exists: {new_step.id}")
        flow.steps.append(new_step)
        flow.touch()
        await self._save()
        return new_step

    async def update_step(
        self, step_id: str, changes: Mapping[str, Any], flow_id: Optional[str] = None
    ) -> Optional[Step]:
        flow = self._require_flow(flow_id)
        for i, step in enumerate(flow.steps):
            if step.id == step_id:
                updated = _merge(step, {k: v for k, v in changes.items() if k != "id"}, Step)
                flow.steps[i] = updated
                flow.touch()
                await self._save()
                return updated
        logger.warning(f"Step not found for update: {step_id}")
        return None

    async def delete_step(self, step_id: str, flow_id: Optional[str] = None) -> bool:
        flow = self._require_flow(flow_id)
        step = flow.get_step(step_id)
        if step is None:
            return False
        flow.steps.remove(step)
        flow.touch()
        await self._save()
        return True

    async def init_flows_from_endpoints(
        self, endpoints: Iterable[Union[Endpoint, Mapping[str, Any]]]
    ) -> List[Flow]:
        """Generate one flow per endpoint category."""
        grouped: Dict[str, List[Endpoint]] = {}
        for raw in endpoints:
            endpoint = raw if isinstance(raw, Endpoint) else Endpoint.model_validate(raw)
            grouped.setdefault(endpoint.group, []).append(endpoint)

        generated: List[Flow] = []
        for category, members in grouped.items():
            generated.append(
                Flow(
                    name=category,
                    description=f"Generated flow for {category} endpoints",
                    steps=[
                        Step(
                            name=e.name or e.path,
                            description=e.description or "",
                            method=(e.method or "GET").upper(),
                            url=e.path,
                            endpoint=e.id,
                        )
                        for e in members
                    ],
                    tags=[GENERATED_FLOW_TAG],
                )
            )

        self._flows.extend(generated)
        if self._active_flow_id is None and self._flows:
            self._active_flow_id = self._flows[0].id
        await self._save()
        logger.info(f"Generated {len(generated)} flows from {sum(map(len, grouped.values()))} endpoints")
        return generated

    # ------------------------------------------------------------------
    # Request resolution
    def resolve_request(self, step: Step) -> HttpRequest:
        """Substitute variables into the url, headers, params and body.

        Object bodies are serialized, substituted and parsed back so that
        nested fields may reference variables.
        """
        substitute = self.variables.substitute
        headers = {
            k: substitute(v) if isinstance(v, str) else str(v)
            for k, v in (step.headers or {}).items()
        }
        params = {
            k: substitute(v) if isinstance(v, str) else v
            for k, v in (step.params or {}).items()
        }
        body = step.body
        if isinstance(body, (dict, list)):
            body = json.loads(substitute(json.dumps(body)))
        elif isinstance(body, str):
            body = substitute(body)
        return HttpRequest(
            method=(step.method or "GET").upper(),
            url=substitute(step.url),
            headers=headers,
            params=params,
            body=body,
        )

    def should_skip(self, step: Step) -> bool:
        if not step.skip_if:
            return False
        expression = self.variables.substitute(step.skip_if)
        try:
            return evaluate_condition(expression, self.variables.get_all())
        except ConditionError as exc:
            logger.error(f"Failed to evaluate skip condition for step {step.name}: {exc}")
            return False

    # ------------------------------------------------------------------
    # Execution
    async def _call(self, request: HttpRequest, token: CancelToken) -> HttpResponse:
        call = asyncio.ensure_future(
            self.executor.execute(
                request.method,
                request.url,
                headers=request.headers,
                params=request.params,
                body=request.body,
            )
        )
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            waiter.cancel()

        if call not in done:
            call.cancel()
            await asyncio.gather(call, return_exceptions=True)
            raise RunCancelled("Run cancelled during HTTP call")
        return call.result()

    async def _sleep(self, seconds: float, token: CancelToken) -> None:
        try:
            await asyncio.wait_for(token.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise RunCancelled("Run cancelled during step delay")

    async def _run_step(self, index: int, step: Step, token: CancelToken) -> StepResult:
        try:
            request = self.resolve_request(step)
        except (TypeError, ValueError) as exc:
            raise StepExecutionFailure(index, step.id, exc) from exc

        logger.info(f"Executing step: {step.name} ({request.method} {request.url})")
        try:
            response = await self._call(request, token)
        except RunCancelled:
            raise
        except Exception as exc:
            logger.error(f"Error executing step {step.name}: {exc}")
            raise StepExecutionFailure(index, step.id, exc) from exc

        extracted: Dict[str, Any] = {}
        extraction_error = None
        try:
            await self.history.add_entry(request, response)
            if step.extract_variables:
                try:
                    extracted = await self.variables.extract_many(
                        response.body, step.extract_variables
                    )
                except MissingRequiredVariable as exc:
                    logger.warning(f"Extraction failed for step {step.name}: {exc}")
                    extraction_error = str(exc)
        except Exception as exc:
            logger.error(f"Error recording step {step.name}: {exc}")
            raise StepExecutionFailure(index, step.id, exc) from exc

        return StepResult(
            step_id=step.id,
            index=index,
            request=request,
            response=response,
            extracted=extracted,
            extraction_error=extraction_error,
        )

    async def execute_step(self, step: Union[Step, str], flow_id: Optional[str] = None) -> StepResult:
        """Run a single step outside of a flow run (a manual call)."""
        if isinstance(step, str):
            flow = self._require_flow(flow_id)
            found = flow.get_step(step)
            if found is None:
                raise ApiflowError(f"Step not found: {step}")
            step = found
        index = -1
        if self.active_flow is not None:
            index = next(
                (i for i, s in enumerate(self.active_flow.steps) if s.id == step.id), -1
            )
        return await self._run_step(index, step, CancelToken())

    def cancel(self) -> bool:
        """Cancel the active run, if any."""
        if self._cancel_token is None:
            return False
        self._cancel_token.cancel()
        return True

    async def run(
        self,
        flow: Union[Flow, str, None] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> Optional[FlowRunResult]:
        """Run ``flow`` (or the active flow) to completion, abort or cancel."""
        if self._running:
            logger.warning("A flow run is already in progress, ignoring run request")
            return None

        if not isinstance(flow, Flow):
            flow = self._require_flow(flow)

        token = cancel_token or CancelToken()
        self._running = True
        self._cancel_token = token
        self.status = RunStatus.RUNNING
        self.current_step_index = -1
        result = FlowRunResult(flow_id=flow.id)
        logger.info(f"Running flow {flow.name} with {len(flow.steps)} steps")

        try:
            for index, step in enumerate(list(flow.steps)):
                if token.cancelled:
                    raise RunCancelled("Run cancelled")
                self.current_step_index = index
                self.observer.step_started(index, step)

                if self.should_skip(step):
                    logger.debug(f"Skipping step: {step.name}")
                    result.skipped.append(step.id)
                    self.observer.step_skipped(index, step)
                    continue

                step_result = await self._run_step(index, step, token)
                result.executed.append(step_result)
                self.observer.step_completed(index, step, step_result)

                if step.delay and step.delay > 0:
                    await self._sleep(step.delay / 1000, token)

            result.status = RunStatus.COMPLETED
            logger.info(f"Flow {flow.name} executed successfully")
        except RunCancelled as exc:
            result.status = RunStatus.CANCELLED
            result.error = str(exc)
            result.failed_step_index = self.current_step_index
            logger.warning(f"Flow {flow.name} cancelled at step {self.current_step_index}")
        except StepExecutionFailure as exc:
            result.status = RunStatus.ABORTED
            result.error = str(exc)
            result.failed_step_index = exc.step_index
            logger.error(f"Flow execution failed: {exc}")
        except Exception as exc:
            result.status = RunStatus.ABORTED
            result.error = str(exc)
            result.failed_step_index = self.current_step_index
            logger.error(f"Flow {flow.name} aborted at step {self.current_step_index}: {exc}")
        finally:
            self.current_step_index = -1
            self.status = result.status
            self._running = False
            self._cancel_token = None
            result.finished_at = now_ms()

        self.observer.run_finished(result)
        return result


__all__ = ["CancelToken", "FlowEngine", "RunCancelled"]
