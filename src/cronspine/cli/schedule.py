"""
CLI: ``cronspine schedule`` - task instances.
"""

from __future__ import annotations

from datetime import datetime

import typer

from cronspine.cli.utils import cli_errors, console, err_console, open_context, print_json, print_table
from cronspine.core.errors import ValidationError
from cronspine.core.timestamps import ensure_utc
from cronspine.scheduling.models import InstanceKey, canonical_json
from cronspine.scheduling.repository import InstanceRepository

app = typer.Typer(no_args_is_help=True)

ArgumentsOption = typer.Option("", "--arguments", "-a", help="Arguments (JSON)")
InstanceOption = typer.Option(1, "--instance", "-i", min=1, help="Instance number")


def _repo(database: str | None, prefix: str | None) -> InstanceRepository:
    ctx = open_context(database, prefix)
    return InstanceRepository(ctx.conn, ctx.dialect, ctx.prefix)


def _key(task: str, arguments: str, instance: int) -> InstanceKey:
    try:
        return InstanceKey(task, canonical_json(arguments), instance)
    except ValueError as e:
        raise ValidationError(f"--arguments is not valid JSON: {e}", field="arguments") from e


@app.command("add")
def add(
    task: str = typer.Argument(..., help="Task name"),
    arguments: str = ArgumentsOption,
    instance: int = InstanceOption,
    frequency: int = typer.Option(0, "--frequency", "-f", help="Seconds between runs, 0 = one-time"),
    priority: int = typer.Option(0, "--priority", "-p", help="0-255"),
    message: str | None = typer.Option(None, "--message", "-m", help="Progress message"),
    day_of_month: list[int] | None = typer.Option(None, "--day-of-month", help="Allowed day (repeatable)"),
    day_of_week: list[int] | None = typer.Option(None, "--day-of-week", help="Allowed ISO weekday (repeatable)"),
    next_run: datetime | None = typer.Option(None, "--next-run", help="First due time (UTC)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Add or update a task instance."""
    with cli_errors():
        saved = _repo(database, prefix).add(
            {
                "task": task,
                "arguments": arguments,
                "instance": instance,
                "frequency": frequency,
                "priority": priority,
                "message": message,
                "day_of_month": day_of_month or [],
                "day_of_week": day_of_week or [],
                "next_run": ensure_utc(next_run) if next_run else None,
            }
        )
    console.print(f"[green]✓[/green] {saved.key} due {saved.next_run.isoformat() if saved.next_run else '-'}")


@app.command("delete")
def delete(
    task: str = typer.Argument(...),
    arguments: str = ArgumentsOption,
    instance: int = InstanceOption,
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Delete a task instance (system instances are protected)."""
    with cli_errors():
        key = _key(task, arguments, instance)
        deleted = _repo(database, prefix).delete(key)
    if not deleted:
        err_console.print(f"[yellow]{key} not deleted (missing or system)[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] {key} deleted")


def _toggle(task: str, arguments: str, instance: int, enabled: bool, database, prefix) -> None:
    with cli_errors():
        key = _key(task, arguments, instance)
        changed = _repo(database, prefix).set_enabled(key, enabled)
    state = "enabled" if enabled else "disabled"
    console.print(f"{key} {state}" if changed else f"[dim]{key} unchanged[/dim]")


@app.command("enable")
def enable(
    task: str = typer.Argument(...),
    arguments: str = ArgumentsOption,
    instance: int = InstanceOption,
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Enable a task instance."""
    _toggle(task, arguments, instance, True, database, prefix)


@app.command("disable")
def disable(
    task: str = typer.Argument(...),
    arguments: str = ArgumentsOption,
    instance: int = InstanceOption,
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Disable a task instance."""
    _toggle(task, arguments, instance, False, database, prefix)


@app.command("system")
def system(
    task: str = typer.Argument(...),
    arguments: str = ArgumentsOption,
    instance: int = InstanceOption,
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Mark a recurring instance as system (cannot be deleted)."""
    with cli_errors():
        key = _key(task, arguments, instance)
        changed = _repo(database, prefix).set_system(key)
    console.print(f"{key} is system" if changed else f"[dim]{key} unchanged[/dim]")


@app.command("list")
def list_instances(
    task: str | None = typer.Argument(None, help="Only instances of this task"),
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """List task instances by due time."""
    with cli_errors():
        instances = _repo(database, prefix).list(task)
    if json_out:
        print_json(instances)
        return
    print_table(
        instances,
        title="Schedule",
        columns=["task", "arguments", "instance", "frequency", "priority", "status", "run_by", "next_run", "enabled"],
    )
