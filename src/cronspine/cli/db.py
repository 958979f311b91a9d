"""
CLI: ``cronspine db`` - schema management.
"""

from __future__ import annotations

import typer

from cronspine.cli.utils import cli_errors, console, open_context, print_dict
from cronspine.core.schema import SCHEMA_VERSION, create_schema, get_schema_version

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL or path"),
    prefix: str | None = typer.Option(None, "--prefix", help="Table prefix"),
) -> None:
    """Create scheduler tables and seed default settings (idempotent)."""
    with cli_errors():
        ctx = open_context(database, prefix)
        create_schema(ctx.conn, ctx.dialect, ctx.prefix)
    console.print(
        f"[green]✓[/green] Schema {SCHEMA_VERSION} ready "
        f"({ctx.info.backend}, prefix '{ctx.prefix}')"
    )


@app.command()
def version(
    database: str | None = typer.Option(None, "--database", "-d"),
    prefix: str | None = typer.Option(None, "--prefix"),
) -> None:
    """Show the installed schema version."""
    with cli_errors():
        ctx = open_context(database, prefix)
        installed = get_schema_version(ctx.conn, ctx.dialect, ctx.prefix)
    print_dict(
        {"installed": installed, "package": SCHEMA_VERSION, "backend": ctx.info.backend},
        title="Schema",
    )
