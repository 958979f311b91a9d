"""
CLI: ``cronspine settings`` - scheduler tunables stored in the datastore.
"""

from __future__ import annotations

import typer

from cronspine.cli.utils import cli_errors, console, open_context, print_json, print_table
from cronspine.scheduling.config import SETTING_FALLBACKS, SettingsRepository

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show(
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Show stored settings and the effective snapshot."""
    with cli_errors():
        ctx = open_context(database, prefix)
        repo = SettingsRepository(ctx.conn, ctx.dialect, ctx.prefix)
        stored = repo.load()
        effective = repo.refresh().as_settings()

    rows = [
        {
            "setting": name,
            "stored": stored.get(name),
            "effective": effective[name],
        }
        for name in SETTING_FALLBACKS
    ]
    if json_out:
        print_json(rows)
        return
    print_table(rows, title="Scheduler settings")


@app.command("set")
def set_(
    name: str = typer.Argument(..., help=f"One of: {', '.join(SETTING_FALLBACKS)}"),
    value: str = typer.Argument(..., help="Integer value; <= 0 restores the default"),
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Change one setting. Running agents pick it up at their next batch."""
    with cli_errors():
        ctx = open_context(database, prefix)
        config = SettingsRepository(ctx.conn, ctx.dialect, ctx.prefix).set(name, value)
    console.print(f"[green]✓[/green] {name} = {config.as_settings()[name]}")
