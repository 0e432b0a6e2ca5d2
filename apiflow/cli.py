"""Command line interface for managing and running apiflow flows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
import yaml

from apiflow import ApiflowConfig, ApiflowError, Workbench, get_storage, load_config
from apiflow.contracts import FlowRunResult, Step, StepResult

T = TypeVar("T")

app = typer.Typer(help="CLI for apiflow HTTP flows")

# Command groups
flow_app = typer.Typer(help="Commands for managing and running flows")
var_app = typer.Typer(help="Commands for managing variables")
history_app = typer.Typer(help="Commands for inspecting request history")
state_app = typer.Typer(help="Commands for inspecting the state snapshot")

app.add_typer(flow_app, name="flow")
app.add_typer(var_app, name="var")
app.add_typer(history_app, name="history")
app.add_typer(state_app, name="state")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, help="Path to an apiflow YAML config"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """apiflow CLI entry point."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = load_config(str(config) if config else None)


def _with_workbench(ctx: typer.Context, action: Callable[[Workbench], Awaitable[T]], **kwargs: Any) -> T:
    config: ApiflowConfig = ctx.obj or load_config()
    storage = get_storage(config.storage_url) if config.storage_url else get_storage()

    async def _main() -> T:
        bench = await Workbench.from_config(config, storage=storage, **kwargs)
        try:
            return await action(bench)
        finally:
            await bench.aclose()

    return asyncio.run(_main())


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw


class _EchoObserver:
    """Print run progress to the terminal."""

    def step_started(self, index: int, step: Step) -> None:
        typer.echo(f"[{index}] {step.method} {step.url} - {step.name}")

    def step_skipped(self, index: int, step: Step) -> None:
        typer.echo(f"[{index}] skipped")

    def step_completed(self, index: int, step: Step, result: StepResult) -> None:
        typer.echo(
            f"[{index}] {result.response.status} in {result.response.elapsed_ms}ms"
        )
        for name, value in result.extracted.items():
            typer.echo(f"    {name} = {json.dumps(value)}")
        if result.extraction_error:
            typer.secho(f"    {result.extraction_error}", fg=typer.colors.YELLOW)

    def run_finished(self, result: FlowRunResult) -> None:
        pass


# ----------------------------------------------------------------------
# Flows
@flow_app.command("list")
def flow_list(ctx: typer.Context) -> None:
    """List all flows; the active flow is marked with ``*``."""

    async def _list(bench: Workbench):
        return bench.flows.flows, bench.flows.active_flow

    flows, active = _with_workbench(ctx, _list)
    if not flows:
        typer.echo("No flows found")
        return
    for flow in flows:
        marker = "*" if active is not None and flow.id == active.id else " "
        typer.echo(f"{marker} {flow.id}\t{flow.name}\t{len(flow.steps)} steps")


@flow_app.command("show")
def flow_show(ctx: typer.Context, flow_id: str) -> None:
    """
    Show a flow and its steps.

    Example:
        apiflow flow show f_k3j9x1a_lz8q2m4
        # Output: Flow f_k3j9x1a_lz8q2m4: Default Flow
        #         1. GET /api/v1/health - Get API Status
    """

    async def _get(bench: Workbench):
        return bench.flows.get_flow(flow_id)

    flow = _with_workbench(ctx, _get)
    if flow is None:
        typer.echo("Flow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Flow {flow.id}: {flow.name}")
    if flow.description:
        typer.echo(f"Description: {flow.description}")
    for position, step in enumerate(flow.steps, start=1):
        typer.echo(f"{position}. {step.method} {step.url} - {step.name}")
        if step.skip_if:
            typer.echo(f"   skip if: {step.skip_if}")
        for rule in step.extract_variables or []:
            typer.echo(f"   extract {rule.name} <- {rule.path}")


@flow_app.command("create")
def flow_create(
    ctx: typer.Context,
    name: str,
    description: str = typer.Option("A new API flow", help="Flow description"),
) -> None:
    """Create an empty flow."""

    async def _create(bench: Workbench):
        return await bench.flows.create_flow(name=name, description=description)

    flow = _with_workbench(ctx, _create)
    typer.echo(f"Created flow {flow.id}: {flow.name}")


@flow_app.command("delete")
def flow_delete(ctx: typer.Context, flow_id: str) -> None:
    """Delete a flow."""

    async def _delete(bench: Workbench):
        return await bench.flows.delete_flow(flow_id)

    if not _with_workbench(ctx, _delete):
        typer.echo("Flow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Deleted flow {flow_id}")


@flow_app.command("run")
def flow_run(
    ctx: typer.Context,
    flow_id: Optional[str] = typer.Argument(None, help="Flow to run (default: active flow)"),
    snapshot: bool = typer.Option(False, help="Diff the state before and after the run"),
) -> None:
    """
    Run a flow step by step.

    Each step is printed as it starts, with the response status and any
    extracted variables. Exits with code 1 when the run does not complete.

    Example:
        apiflow flow run f_k3j9x1a_lz8q2m4 --snapshot
    """

    async def _run(bench: Workbench):
        target = bench.flows.get_flow(flow_id) if flow_id else bench.flows.active_flow
        if target is None:
            return None
        return await bench.run_flow(flow_id, snapshot=snapshot)

    report = _with_workbench(ctx, _run, run_observer=_EchoObserver())
    if report is None:
        typer.echo("Flow not found")
        raise typer.Exit(code=1)

    result = report.result
    typer.echo(f"Run {result.status.value}: {len(result.executed)} executed, {len(result.skipped)} skipped")
    if report.diff is not None:
        typer.echo(json.dumps(report.diff.model_dump(by_alias=True), indent=2, default=str))
    if not result.ok:
        typer.secho(f"Error: {result.error}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@flow_app.command("generate")
def flow_generate(ctx: typer.Context, catalog: Path) -> None:
    """Generate one flow per category from a YAML or JSON endpoint catalog."""
    if not catalog.exists():
        typer.secho("Specified catalog does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    with open(catalog) as f:
        data = yaml.safe_load(f) or []
    endpoints = data.get("endpoints", []) if isinstance(data, dict) else data

    async def _generate(bench: Workbench):
        return await bench.flows.init_flows_from_endpoints(endpoints)

    generated = _with_workbench(ctx, _generate)
    if not generated:
        typer.echo("No endpoints found in catalog")
        return
    for flow in generated:
        typer.echo(f"Generated flow {flow.id}: {flow.name} ({len(flow.steps)} steps)")


# ----------------------------------------------------------------------
# Variables
@var_app.command("list")
def var_list(ctx: typer.Context) -> None:
    """List all variables."""

    async def _list(bench: Workbench):
        return bench.variables.get_all()

    variables = _with_workbench(ctx, _list)
    if not variables:
        typer.echo("No variables set")
        return
    for name, value in variables.items():
        typer.echo(f"{name}\t{json.dumps(value)}")


@var_app.command("set")
def var_set(ctx: typer.Context, name: str, value: str) -> None:
    """Set a variable. Values are parsed as JSON, falling back to plain text."""

    async def _set(bench: Workbench):
        await bench.variables.set(name, _parse_value(value))

    _with_workbench(ctx, _set)
    typer.echo(f"Set {name}")


@var_app.command("unset")
def var_unset(ctx: typer.Context, name: str) -> None:
    """Remove a variable."""

    async def _unset(bench: Workbench):
        return await bench.variables.delete(name)

    if not _with_workbench(ctx, _unset):
        typer.echo("Variable not found")
        raise typer.Exit(code=1)
    typer.echo(f"Removed {name}")


@var_app.command("clear")
def var_clear(ctx: typer.Context) -> None:
    """Remove every variable."""

    async def _clear(bench: Workbench):
        await bench.variables.clear()

    _with_workbench(ctx, _clear)
    typer.echo("Variables cleared")


# ----------------------------------------------------------------------
# History
@history_app.command("list")
def history_list(
    ctx: typer.Context,
    limit: int = typer.Option(20, help="Maximum number of entries to show"),
) -> None:
    """List recent requests, newest first."""

    async def _list(bench: Workbench):
        return bench.history.entries()[:limit]

    entries = _with_workbench(ctx, _list)
    if not entries:
        typer.echo("No history entries")
        return
    for entry in entries:
        typer.echo(
            f"{entry.id}\t{entry.method} {entry.path}\t{entry.status}\t{entry.duration}ms"
        )


@history_app.command("clear")
def history_clear(ctx: typer.Context) -> None:
    """Remove every history entry."""

    async def _clear(bench: Workbench):
        await bench.history.clear()

    _with_workbench(ctx, _clear)
    typer.echo("History cleared")


# ----------------------------------------------------------------------
# State
@state_app.command("show")
def state_show(
    ctx: typer.Context,
    fetch: bool = typer.Option(False, help="Refresh the state from the configured source first"),
) -> None:
    """Print the current state snapshot as JSON."""

    async def _show(bench: Workbench):
        if fetch:
            return await bench.state.fetch_from_source()
        return bench.state.get_all_state()

    try:
        state = _with_workbench(ctx, _show)
    except ApiflowError as exc:
        typer.secho(f"Failed to read state: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(state, indent=2, sort_keys=True, default=str))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
