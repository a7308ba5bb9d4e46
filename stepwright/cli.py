"""Command line interface for planning, running and inspecting workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError

from stepwright import RunExecutor, StepDispatcher, get_repository, get_wait_coordinator
from stepwright.config import StepwrightConfig, load_config
from stepwright.definitions import FileDefinitionSource, load_definition
from stepwright.errors import UnknownWaitToken
from stepwright.executors import default_registry
from stepwright.persistence import RunStatus
from stepwright.planner import plan

app = typer.Typer(help="CLI for stepwright workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for workflow definitions")
run_app = typer.Typer(help="Commands for inspecting runs")
wait_app = typer.Typer(help="Commands for wait tokens")

app.add_typer(workflow_app, name="workflow")
app.add_typer(run_app, name="run")
app.add_typer(wait_app, name="wait")


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a YAML configuration file"
    ),
) -> None:
    """Stepwright CLI entry point."""
    config = load_config(str(config_path) if config_path else None)
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = config


def _config(ctx: typer.Context) -> StepwrightConfig:
    if isinstance(ctx.obj, StepwrightConfig):
        return ctx.obj
    return load_config()


def _parse_json(value: Optional[str], option: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Invalid JSON: {exc}", param_hint=option)


def _load(path: Path):
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        return load_definition(path)
    except ValidationError as exc:
        typer.secho(f"Invalid workflow definition: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@workflow_app.command("plan")
def workflow_plan(path: Path) -> None:
    """
    Print the planned execution order of a workflow definition.

    Example:
        stepwright workflow plan ./workflows/onboarding.yaml
        # Output: 1. trigger_check
        #         2. notify
    """
    definition = _load(path)
    order = plan(definition)
    if not order:
        typer.echo("Workflow has no nodes")
        return
    for index, node_id in enumerate(order, start=1):
        typer.echo(f"{index}. {node_id}")


@workflow_app.command("list")
def workflow_list(
    directory: Path,
    company_id: Optional[str] = typer.Option(None, "--company-id"),
    status: Optional[str] = typer.Option("active", help="Filter by status"),
) -> None:
    """List workflows stored as YAML/JSON files in DIRECTORY."""
    if not directory.is_dir():
        typer.secho("Specified path is not a directory", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    source = FileDefinitionSource(directory)
    workflows = asyncio.run(source.list_workflows(company_id=company_id, status=status))
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.status}\t{wf.definition.trigger.type}\t{wf.name or ''}")


@workflow_app.command("run")
def workflow_run(
    ctx: typer.Context,
    path: Path,
    payload: Optional[str] = typer.Option(None, help="Trigger payload as JSON"),
    company_id: Optional[str] = typer.Option(None, "--company-id"),
) -> None:
    """
    Execute a workflow definition in-process.

    The run is stored in the configured repository and waits use the
    configured wait backend.

    Example:
        stepwright workflow run ./workflows/invoice.yaml --payload '{"amount": 100}'
        # Output: Run 3f2c...: completed
        #         Visited: check_amount -> create_invoice
    """
    definition = _load(path)
    trigger_payload = _parse_json(payload, "--payload")
    config = _config(ctx)
    executor = RunExecutor(
        repository=get_repository(config=config),
        dispatcher=StepDispatcher(
            default_registry(config=config), get_wait_coordinator(config=config)
        ),
        config=config,
    )
    result = asyncio.run(
        executor.run(definition, trigger_payload, company_id=company_id)
    )
    typer.echo(f"Run {result.run.id}: {result.status.value}")
    typer.echo(f"Visited: {' -> '.join(result.visited) or '(none)'}")
    if result.status == RunStatus.FAILED:
        typer.secho(f"Error: {result.run.error}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@run_app.command("list")
def run_list(
    ctx: typer.Context,
    workflow_id: Optional[str] = typer.Option(None, "--workflow-id"),
) -> None:
    """List runs with their current status."""
    repo = get_repository(config=_config(ctx))
    runs = asyncio.run(repo.list_runs(workflow_id))
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.id}\t{run.workflow_id or '-'}\t{run.status.value}")


@run_app.command("show")
def run_show(ctx: typer.Context, run_id: str) -> None:
    """
    Show a run and the ledger row of every node.

    Example:
        stepwright run show 3f2c...
        # Output: Run 3f2c...: failed
        #         - create_invoice: failed attempt=3 (... -> ...)
    """
    repo = get_repository(config=_config(ctx))

    async def _fetch():
        return await repo.get_run(run_id), await repo.list_steps(run_id)

    run, steps = asyncio.run(_fetch())
    if run is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    typer.echo(f"Run {run.id}: {run.status.value}")
    if run.trigger_payload:
        typer.echo(f"Payload: {json.dumps(run.trigger_payload, default=str)}")
    if run.error:
        typer.echo(f"Error: {run.error.get('message')}")
    for step in steps:
        typer.echo(
            f"- {step.node_id}: {step.status.value} attempt={step.attempt}"
            + (
                f" ({step.started_at} -> {step.finished_at})"
                if step.started_at or step.finished_at
                else ""
            )
        )


@wait_app.command("complete")
def wait_complete(
    ctx: typer.Context,
    token_id: str,
    output: Optional[str] = typer.Option(None, help="Completion payload as JSON"),
) -> None:
    """Complete a wait token so the suspended run resumes."""
    coordinator = get_wait_coordinator(config=_config(ctx))
    try:
        asyncio.run(coordinator.complete_token(token_id, _parse_json(output, "--output")))
    except UnknownWaitToken:
        typer.secho(f"Unknown wait token: {token_id}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Completed {token_id}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
