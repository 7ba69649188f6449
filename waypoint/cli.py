"""Command line interface for waypoint workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from waypoint.api import WorkflowAPI
from waypoint.config import load_config
from waypoint.contracts import Flow, InstanceQuery, WorkflowStatus
from waypoint.errors import WaypointError
from waypoint.parser import WorkflowParser
from waypoint.persistence import get_repository

app = typer.Typer(help="CLI for waypoint workflows")

# Command groups
definition_app = typer.Typer(help="Commands for managing workflow definitions")
instance_app = typer.Typer(help="Commands for inspecting workflow instances")
task_app = typer.Typer(help="Commands for inspecting human tasks")
flow_app = typer.Typer(help="Commands for running flows")

app.add_typer(definition_app, name="definition")
app.add_typer(instance_app, name="instance")
app.add_typer(task_app, name="task")
app.add_typer(flow_app, name="flow")


@app.callback()
def main(debug: bool = typer.Option(False, "--debug", help="Enable debug logging")) -> None:
    """waypoint CLI entry point."""
    level = "DEBUG" if debug else load_config().log_level
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _api() -> WorkflowAPI:
    return WorkflowAPI.from_config(load_config(), repository=get_repository())


@app.command("validate")
def validate(path: Path) -> None:
    """
    Validate a workflow or flow definition file.

    Example:
        waypoint validate workflows/expense.yaml
        # Output: Valid workflow: Expense Approval v1.0.0
    """
    ok, message = WorkflowParser.validate_file(path)
    if not ok:
        _fail(message)
    typer.secho(message, fg=typer.colors.GREEN)


@definition_app.command("list")
def definition_list() -> None:
    """List the latest version of every registered definition."""
    repo = get_repository()
    definitions = asyncio.run(repo.list_definitions())
    if not definitions:
        typer.echo("No definitions found")
        return
    for d in definitions:
        typer.echo(f"{d.id}\t{d.version}\t{d.kind}\t{d.name}")


@definition_app.command("show")
def definition_show(
    definition_id: str,
    version: Optional[str] = typer.Option(None, help="Definition version (default: latest)"),
) -> None:
    """Print a registered definition as JSON."""
    repo = get_repository()
    definition = asyncio.run(repo.get_definition(definition_id, version))
    if definition is None:
        _fail("Definition not found")
    typer.echo(definition.model_dump_json(indent=2))


@definition_app.command("register")
def definition_register(path: Path) -> None:
    """
    Parse a definition file and store it in the configured repository.

    Example:
        waypoint definition register workflows/expense.yaml
    """
    try:
        definition = WorkflowParser.parse_file(path)
        asyncio.run(_api().register_workflow(definition))
    except FileNotFoundError as exc:
        _fail(str(exc))
    except WaypointError as exc:
        _fail(f"Error: {exc}")
    typer.echo(f"Registered {definition.id} v{definition.version}")


@instance_app.command("list")
def instance_list(
    workflow: Optional[str] = typer.Option(None, help="Only instances of this definition"),
    status: Optional[WorkflowStatus] = typer.Option(None, help="Only instances in this status"),
) -> None:
    """
    List workflow instances, newest first.

    Example:
        waypoint instance list --workflow expense_approval --status running
        # Output: wf_3f2a...    expense_approval    running    review
    """
    repo = get_repository()
    query = InstanceQuery(workflow_id=workflow, status=status, sort_by="created_at")
    instances = asyncio.run(repo.query_instances(query))
    if not instances:
        typer.echo("No instances found")
        return
    for i in instances:
        typer.echo(f"{i.id}\t{i.workflow_id}\t{i.status.value}\t{i.current_state}")


@instance_app.command("show")
def instance_show(instance_id: str) -> None:
    """Show status, data and transition history of one instance."""
    repo = get_repository()
    instance = asyncio.run(repo.get_instance(instance_id))
    if instance is None:
        _fail("Instance not found")
    typer.echo(
        f"Instance {instance.id}: {instance.status.value} "
        f"({instance.workflow_id} v{instance.version}) at '{instance.current_state}'"
    )
    if instance.data:
        typer.echo(f"Data: {json.dumps(instance.data, default=str)}")
    if instance.error:
        typer.echo(f"Error: {instance.error}")
    for entry in instance.history:
        by = f" by {entry.triggered_by}" if entry.triggered_by else ""
        typer.echo(
            f"- {entry.from_state} -> {entry.to_state} [{entry.transition}]{by} "
            f"({entry.timestamp.isoformat()})"
        )


@task_app.command("list")
def task_list(instance_id: str) -> None:
    """List the human tasks attached to an instance."""
    repo = get_repository()
    tasks = asyncio.run(repo.get_instance_tasks(instance_id))
    if not tasks:
        typer.echo("No tasks found")
        return
    for t in tasks:
        typer.echo(f"{t.id}\t{t.name}\t{t.status.value}\t{t.effective_assignee or '-'}")


@flow_app.command("run")
def flow_run(
    path: Path,
    vars: Optional[str] = typer.Option(None, "--vars", help="Initial variables as JSON"),
    started_by: Optional[str] = typer.Option(None, help="User starting the flow"),
) -> None:
    """
    Register a flow file and execute it to completion.

    Example:
        waypoint flow run flows/order.yaml --vars '{"amount": 1500}'
        # Output: Flow order_routing completed after 4 node(s)
        #         {"amount": 1500, "route": "manual"}
    """
    try:
        variables = json.loads(vars) if vars else {}
    except json.JSONDecodeError as exc:
        _fail(f"Invalid --vars JSON: {exc}")
    if not isinstance(variables, dict):
        _fail("--vars must be a JSON object")

    try:
        flow = WorkflowParser.parse_file(path)
        if not isinstance(flow, Flow):
            _fail(f"{path} is not a flow definition")
        api = _api()

        async def _run():
            await api.register_workflow(flow)
            return await api.run_flow(flow.id, variables, started_by=started_by)

        result = asyncio.run(_run())
    except FileNotFoundError as exc:
        _fail(str(exc))
    except WaypointError as exc:
        _fail(f"Error: {exc}")

    typer.echo(json.dumps(result.variables, default=str))
    if not result.success:
        _fail(f"Flow {flow.id} failed: {result.error}")
    typer.secho(
        f"Flow {flow.id} completed after {result.nodes_visited} node(s)",
        fg=typer.colors.GREEN,
    )


if __name__ == "__main__":
    app()
