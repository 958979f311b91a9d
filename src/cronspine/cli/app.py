"""
Root Typer application for the cronspine CLI.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

import typer
from typer import Typer

from cronspine import __version__

app = Typer(
    name="cronspine",
    help="cronspine - persistent multi-agent task scheduler.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("cronspine")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"cronspine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """cronspine CLI - manage tasks, schedules, settings and run agents."""


# ── Sub-command registration ─────────────────────────────────────────────

from cronspine.cli.agent import log, run, unhang  # noqa: E402
from cronspine.cli.db import app as db_app  # noqa: E402
from cronspine.cli.schedule import app as sched_app  # noqa: E402
from cronspine.cli.settings import app as settings_app  # noqa: E402
from cronspine.cli.task import app as task_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(settings_app, name="settings", help="Scheduler settings.")
app.add_typer(task_app, name="task", help="Task definitions.")
app.add_typer(sched_app, name="schedule", help="Task instances (the schedule).")

app.command("run")(run)
app.command("unhang")(unhang)
app.command("log")(log)
