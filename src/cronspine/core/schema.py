"""Scheduler schema DDL.

``create_schema`` creates the four prefixed tables and seeds the settings
rows. It is idempotent (``CREATE TABLE IF NOT EXISTS`` plus
insert-or-ignore seeding), so agents may call it on every start.

Tables (``{p}`` is the table prefix, ``cron__`` by default)::

    {p}settings   setting → value                      (tunables + schema version)
    {p}tasks      name → handler, limits, flags        (task definitions)
    {p}schedule   (task, arguments, instance) → state  (task instances)
    {p}log        append-only event rows
"""

from __future__ import annotations

import re

from cronspine.core.dialect import Dialect
from cronspine.core.errors import ConfigError
from cronspine.core.logging import get_logger
from cronspine.core.protocols import Connection

logger = get_logger(__name__)

SCHEMA_VERSION = "1.0.0"

DEFAULT_PREFIX = "cron__"

_PREFIX_RE = re.compile(r"^[A-Za-z0-9_]{0,53}$")

# (setting, default value, description)
DEFAULT_SETTINGS: tuple[tuple[str, int, str], ...] = (
    ("enabled", 1, "Whether the scheduler processes tasks at all"),
    ("retry", 3600, "Seconds before a failed one-time instance is retried"),
    ("log_life", 30, "Days to keep log rows"),
    ("sse_loop", 0, "Whether streaming agents keep looping between batches"),
    ("sse_retry", 10000, "Streaming retry interval in milliseconds"),
    ("max_threads", 4, "Maximum number of concurrently active agents"),
)


def validate_prefix(prefix: str) -> str:
    """Return ``prefix`` if it is safe to splice into table names."""
    if not _PREFIX_RE.match(prefix):
        raise ConfigError(
            f"Invalid table prefix {prefix!r}: up to 53 letters, digits or underscores"
        )
    return prefix


def _statements(dialect: Dialect, p: str) -> list[str]:
    ts = dialect.timestamp_type()
    return [
        f"""
        CREATE TABLE IF NOT EXISTS {p}settings (
            setting VARCHAR(64) PRIMARY KEY,
            value TEXT NOT NULL,
            description TEXT
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {p}tasks (
            name VARCHAR(100) PRIMARY KEY,
            handler VARCHAR(255) NOT NULL,
            object_ref VARCHAR(255),
            parameters TEXT,
            allowed_returns TEXT,
            max_time INTEGER NOT NULL DEFAULT 3600,
            min_frequency INTEGER NOT NULL DEFAULT 3600,
            retry INTEGER NOT NULL DEFAULT 3600,
            enabled INTEGER NOT NULL DEFAULT 1,
            system INTEGER NOT NULL DEFAULT 0,
            description TEXT
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {p}schedule (
            task VARCHAR(100) NOT NULL REFERENCES {p}tasks(name)
                ON UPDATE CASCADE ON DELETE CASCADE,
            arguments VARCHAR(255) NOT NULL DEFAULT '',
            instance INTEGER NOT NULL DEFAULT 1,
            enabled INTEGER NOT NULL DEFAULT 1,
            system INTEGER NOT NULL DEFAULT 0,
            frequency INTEGER NOT NULL DEFAULT 0,
            day_of_month TEXT,
            day_of_week TEXT,
            priority INTEGER NOT NULL DEFAULT 0,
            message VARCHAR(100),
            status INTEGER NOT NULL DEFAULT 0,
            run_by VARCHAR(30),
            registered {ts} NOT NULL,
            updated {ts} NOT NULL,
            next_run {ts} NOT NULL,
            last_run {ts},
            last_success {ts},
            last_error {ts},
            PRIMARY KEY (task, arguments, instance)
        )
        """,
        f"CREATE INDEX IF NOT EXISTS {p}schedule_due ON {p}schedule (next_run, enabled, status)",
        f"CREATE INDEX IF NOT EXISTS {p}schedule_run_by ON {p}schedule (run_by)",
        f"""
        CREATE TABLE IF NOT EXISTS {p}log (
            id {dialect.auto_increment()},
            time {ts} NOT NULL,
            type INTEGER NOT NULL,
            run_by VARCHAR(30),
            streaming INTEGER NOT NULL DEFAULT 0,
            task VARCHAR(100),
            arguments VARCHAR(255),
            instance INTEGER,
            message TEXT NOT NULL
        )
        """,
        f"CREATE INDEX IF NOT EXISTS {p}log_time ON {p}log (time)",
    ]


def create_schema(conn: Connection, dialect: Dialect, prefix: str = DEFAULT_PREFIX) -> None:
    """Create scheduler tables and seed default settings (idempotent)."""
    p = validate_prefix(prefix)
    for stmt in _statements(dialect, p):
        conn.execute(stmt)

    seed = dialect.insert_or_ignore(f"{p}settings", ["setting", "value", "description"])
    for name, value, description in DEFAULT_SETTINGS:
        conn.execute(seed, (name, str(value), description))
    conn.execute(seed, ("version", SCHEMA_VERSION, "Schema version"))
    conn.commit()
    logger.info("schema_ready", prefix=p, backend=dialect.name, version=SCHEMA_VERSION)


def get_schema_version(conn: Connection, dialect: Dialect, prefix: str = DEFAULT_PREFIX) -> str:
    """Installed schema version, ``"0.0.0"`` when nothing is installed."""
    p = validate_prefix(prefix)
    conn.execute(dialect.table_exists_query(), (f"{p}settings",))
    if conn.fetchone() is None:
        return "0.0.0"
    conn.execute(
        f"SELECT value FROM {p}settings WHERE setting = {dialect.placeholder(0)}",
        ("version",),
    )
    row = conn.fetchone()
    return str(row["value"]) if row is not None else "0.0.0"


__all__ = [
    "DEFAULT_PREFIX",
    "DEFAULT_SETTINGS",
    "SCHEMA_VERSION",
    "create_schema",
    "get_schema_version",
    "validate_prefix",
]
