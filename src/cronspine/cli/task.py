"""
CLI: ``cronspine task`` - task definitions.
"""

from __future__ import annotations

import json

import typer

from cronspine.cli.utils import cli_errors, console, err_console, open_context, print_json, print_table
from cronspine.core.errors import ValidationError
from cronspine.scheduling.repository import TaskRepository

app = typer.Typer(no_args_is_help=True)


def _repo(database: str | None, prefix: str | None) -> TaskRepository:
    ctx = open_context(database, prefix)
    return TaskRepository(ctx.conn, ctx.dialect, ctx.prefix)


def _json_option(value: str | None, name: str):
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError as e:
        raise ValidationError(f"--{name} is not valid JSON: {e}", field=name) from e


@app.command("add")
def add(
    name: str = typer.Argument(..., help="Unique task name"),
    handler: str = typer.Option(..., "--handler", "-H", help="Handler name, or method when --object is set"),
    object_ref: str | None = typer.Option(None, "--object", help="Registered factory name"),
    parameters: str | None = typer.Option(None, "--parameters", help="Factory arguments (JSON)"),
    returns: str | None = typer.Option(None, "--returns", help="Allowed return values (JSON list)"),
    max_time: int = typer.Option(3600, "--max-time", help="Execution budget / hang threshold (s)"),
    min_frequency: int = typer.Option(3600, "--min-frequency", help="Lowest recurring frequency (s)"),
    retry: int = typer.Option(3600, "--retry", help="Retry delay after failure (s), 0 = global"),
    description: str | None = typer.Option(None, "--description"),
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Add or update a task definition."""
    with cli_errors():
        definition = _repo(database, prefix).add(
            {
                "name": name,
                "handler": handler,
                "object_ref": object_ref,
                "parameters": _json_option(parameters, "parameters"),
                "allowed_returns": _json_option(returns, "returns"),
                "max_time": max_time,
                "min_frequency": min_frequency,
                "retry": retry,
                "description": description,
            }
        )
    console.print(f"[green]✓[/green] Task '{definition.name}' saved")


@app.command("delete")
def delete(
    name: str = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Delete a task and all of its instances (system tasks are protected)."""
    with cli_errors():
        deleted = _repo(database, prefix).delete(name)
    if not deleted:
        err_console.print(f"[yellow]Task '{name}' not deleted (missing or system)[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Task '{name}' deleted")


@app.command("enable")
def enable(
    name: str = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Enable a task."""
    with cli_errors():
        changed = _repo(database, prefix).set_enabled(name, True)
    console.print(f"Task '{name}' enabled" if changed else f"[dim]Task '{name}' unchanged[/dim]")


@app.command("disable")
def disable(
    name: str = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Disable a task; none of its instances will be claimed."""
    with cli_errors():
        changed = _repo(database, prefix).set_enabled(name, False)
    console.print(f"Task '{name}' disabled" if changed else f"[dim]Task '{name}' unchanged[/dim]")


@app.command("system")
def system(
    name: str = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Mark a task as system (cannot be deleted)."""
    with cli_errors():
        changed = _repo(database, prefix).set_system(name)
    console.print(f"Task '{name}' is system" if changed else f"[dim]Task '{name}' unchanged[/dim]")


@app.command("list")
def list_tasks(
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """List task definitions."""
    with cli_errors():
        tasks = _repo(database, prefix).list()
    if json_out:
        print_json(tasks)
        return
    print_table(
        tasks,
        title="Tasks",
        columns=["name", "handler", "object_ref", "max_time", "min_frequency", "retry", "enabled", "system"],
    )
