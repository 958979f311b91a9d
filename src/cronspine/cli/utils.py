"""
CLI utility helpers - connections, handler loading, output formatting.
"""

from __future__ import annotations

import importlib
import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from cronspine.core.connection import ConnectionInfo, create_connection
from cronspine.core.dialect import Dialect
from cronspine.core.errors import ConfigError, CronError
from cronspine.core.logging import configure_logging
from cronspine.core.settings import CronSettings

console = Console()
err_console = Console(stderr=True)


# ── Context ──────────────────────────────────────────────────────────────


@dataclass
class CliContext:
    """Open connection plus the settings it was opened with."""

    conn: Any
    info: ConnectionInfo
    settings: CronSettings

    @property
    def dialect(self) -> Dialect:
        return self.info.dialect

    @property
    def prefix(self) -> str:
        return self.settings.table_prefix


def load_settings(database: str | None = None, prefix: str | None = None) -> CronSettings:
    """Environment settings with command-line overrides applied."""
    overrides: dict[str, Any] = {}
    if database:
        overrides["database_url"] = database
    if prefix is not None:
        overrides["table_prefix"] = prefix
    try:
        return CronSettings(**overrides)
    except ValueError as e:
        raise ConfigError(f"Invalid settings: {e}", cause=e) from e


def setup_logging(settings: CronSettings) -> None:
    configure_logging(settings.log_level, json_format=settings.json_logs)


def open_context(
    database: str | None = None,
    prefix: str | None = None,
    *,
    init_schema: bool = False,
) -> CliContext:
    """Open the configured datastore."""
    settings = load_settings(database, prefix)
    conn, info = create_connection(
        settings.database_url, init_schema=init_schema, table_prefix=settings.table_prefix
    )
    return CliContext(conn=conn, info=info, settings=settings)


def load_handlers(modules: list[str]) -> list[str]:
    """Import handler modules so they register into the default registry."""
    loaded = []
    for name in modules:
        try:
            importlib.import_module(name)
        except ImportError as e:
            raise ConfigError(f"Cannot import handler module '{name}': {e}", cause=e) from e
        loaded.append(name)
    return loaded


@contextmanager
def cli_errors() -> Iterator[None]:
    """Render cronspine errors and exit with status 1."""
    try:
        yield
    except CronError as e:
        err_console.print(f"[bold red]Error[/bold red] ({type(e).__name__}): {e.message}")
        raise typer.Exit(code=1) from e


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def print_json(data: Any) -> None:
    payload = [_to_dict(d) for d in data] if isinstance(data, list | tuple) else _to_dict(data)
    console.print_json(json.dumps(payload, default=str))


def print_table(items: list, *, title: str = "", columns: list[str] | None = None) -> None:
    """Render a list of models/dicts as a Rich table."""
    if not items:
        console.print("[dim]No items.[/dim]")
        return
    rows = [_to_dict(item) for item in items]
    columns = columns or list(rows[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if row.get(c) is None else str(row.get(c)) for c in columns))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
