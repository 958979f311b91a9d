"""
CLI: ``cronspine run`` / ``unhang`` / ``log`` - the agent side.

``run`` is meant to be invoked from system cron (or a supervisor) every
minute; several hosts may run it against the same database::

    * * * * *  cronspine run --items 5 --handlers myapp.cron_tasks

With ``--stream`` the agent writes Server-Sent Events frames to stdout
and, if the ``sse_loop`` setting is on, keeps working until the reader
disconnects.
"""

from __future__ import annotations

import sys

import typer

from cronspine.cli.utils import (
    cli_errors,
    console,
    err_console,
    load_handlers,
    open_context,
    print_json,
    print_table,
    setup_logging,
)
from cronspine.execution.executor import Executor
from cronspine.execution.handlers import register_builtins
from cronspine.execution.registry import get_default_registry
from cronspine.scheduling.agent import Agent, CycleStatus
from cronspine.scheduling.config import SettingsRepository
from cronspine.scheduling.events import EventLog
from cronspine.scheduling.recovery import HangRecovery
from cronspine.scheduling.state import InstanceStateMachine
from cronspine.scheduling.stream import SSEWriter


def run(
    items: int | None = typer.Option(None, "--items", "-n", min=1, help="Instances per batch"),
    handlers: list[str] | None = typer.Option(
        None, "--handlers", "-H", help="Module registering handlers (repeatable)"
    ),
    builtins: bool = typer.Option(True, "--builtins/--no-builtins", help="Register built-in handlers"),
    stream: bool = typer.Option(False, "--stream", help="Write SSE frames to stdout"),
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
    json_out: bool = typer.Option(False, "--json", help="Print the cycle summary as JSON"),
) -> None:
    """Run one scheduler cycle: recover hangs, claim due instances, execute them."""
    with cli_errors():
        ctx = open_context(database, prefix)
        setup_logging(ctx.settings)
        registry = get_default_registry()
        if builtins:
            register_builtins(registry)
        load_handlers([*ctx.settings.handler_modules, *(handlers or [])])

        agent = Agent(
            ctx.conn,
            ctx.dialect,
            ctx.prefix,
            executor=Executor(registry, enforce_time_limit=ctx.settings.enforce_time_limit),
            stream=SSEWriter(sys.stdout) if stream else None,
        )
        try:
            result = agent.process(items or ctx.settings.batch_size)
        except KeyboardInterrupt:
            err_console.print("\n[yellow]Agent stopped by user[/yellow]")
            raise typer.Exit(code=130) from None

    if stream:
        # stdout carries the event stream
        if result.status is CycleStatus.FATAL:
            raise typer.Exit(code=1)
        return
    if json_out:
        print_json(result.to_dict())
    else:
        colour = {
            CycleStatus.COMPLETED: "green",
            CycleStatus.DISABLED: "yellow",
            CycleStatus.NO_CAPACITY: "yellow",
            CycleStatus.FATAL: "red",
        }[result.status]
        console.print(
            f"[{colour}]{result.status.value}[/{colour}] "
            f"processed={result.processed} succeeded={result.succeeded} failed={result.failed}"
        )
        if result.message:
            console.print(f"  {result.message}")
    if result.status is CycleStatus.FATAL:
        raise typer.Exit(code=1)


def unhang(
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Release abandoned claims and purge interrupted removals."""
    with cli_errors():
        ctx = open_context(database, prefix)
        setup_logging(ctx.settings)
        machine = InstanceStateMachine(ctx.conn, ctx.dialect, ctx.prefix)
        recovery = HangRecovery(machine)
        config = SettingsRepository(ctx.conn, ctx.dialect, ctx.prefix).refresh()
        report = recovery.run(config)
    console.print(f"[green]✓[/green] recovered={report.recovered} purged={report.purged}")


def log(
    task: str | None = typer.Option(None, "--task", "-t", help="Only events of this task"),
    limit: int = typer.Option(50, "--limit", "-l", min=1),
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Show recent scheduler events, newest first."""
    with cli_errors():
        ctx = open_context(database, prefix)
        rows = EventLog(ctx.conn, ctx.dialect, ctx.prefix).recent(limit, task)
    for row in rows:
        event = row["type"]
        row["type"] = getattr(event, "name", event)
    if json_out:
        print_json(rows)
        return
    print_table(rows, title="Event log", columns=["time", "type", "task", "instance", "run_by", "message"])
