"""SQL dialect abstraction for database-agnostic scheduler code.

Provides a ``Dialect`` protocol and implementations for the two supported
backends. Repositories and the claim selector use ``Dialect`` methods to
generate SQL fragments (placeholders, upserts, locking clauses, time
arithmetic) without referencing a specific database driver.

Architecture::

    ┌────────────────────────────────────────────────────────────────┐
    │  sql = f"UPDATE t SET run_by = {d.placeholder(0)} ..."         │
    │  sql += d.skip_locked("s")                                     │
    │  conn.execute(sql, params)                                     │
    └────────────────────────────────────────────────────────────────┘
                              │
                              ▼
            ┌────────────────────────┐ ┌──────────────────────────┐
            │ SQLite                 │ │ PostgreSQL               │
            │ ?, ?, ?                │ │ %s, %s, %s               │
            │ BEGIN IMMEDIATE        │ │ FOR UPDATE SKIP LOCKED   │
            │ julianday() arithmetic │ │ EXTRACT(EPOCH FROM ...)  │
            └────────────────────────┘ └──────────────────────────┘

SQLite has no row locks. The claim runs inside ``BEGIN IMMEDIATE`` which
takes the database write lock up front, so two agents serialize on the
claim instead of selecting the same rows.

Examples:
    >>> d = SQLiteDialect()
    >>> d.placeholders(3)
    '?, ?, ?'
    >>> get_dialect("postgresql").skip_locked("s")
    ' FOR UPDATE OF s SKIP LOCKED'
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Every method returns a **SQL fragment** (string) that is valid for
    the target database.
    """

    @property
    def name(self) -> str:
        """Human-readable dialect name (e.g. ``'sqlite'``)."""
        ...

    # -- Placeholder generation --------------------------------------------

    def placeholder(self, index: int) -> str:
        """Single positional placeholder (0-based index)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list."""
        ...

    # -- DML helpers -------------------------------------------------------

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        """``INSERT … ON CONFLICT DO NOTHING`` (or equivalent)."""
        ...

    def upsert(
        self,
        table: str,
        columns: list[str],
        key_columns: list[str],
        update_exprs: dict[str, str] | None = None,
    ) -> str:
        """``INSERT … ON CONFLICT (keys) DO UPDATE SET …``

        ``update_exprs`` overrides the SET expression for individual
        columns; ``{new}`` and ``{old}`` in an expression expand to the
        incoming row and the stored row.
        """
        ...

    # -- Scheduler fragments -----------------------------------------------

    def overdue_seconds(self, column: str) -> str:
        """Seconds between a bound ``now`` parameter and ``column``.

        Consumes exactly one placeholder.
        """
        ...

    def ln(self, expr: str) -> str:
        """Natural logarithm of ``expr``."""
        ...

    def skip_locked(self, alias: str) -> str:
        """Row-locking suffix for the claim SELECT (may be empty)."""
        ...

    def begin_exclusive(self) -> str | None:
        """Statement opening a write-locked transaction, or ``None``."""
        ...

    # -- DDL helpers -------------------------------------------------------

    def auto_increment(self) -> str:
        """DDL fragment for auto-incrementing primary key type."""
        ...

    def timestamp_type(self) -> str:
        """Column type for scheduler timestamps."""
        ...

    def table_exists_query(self) -> str:
        """Query returning a row when the table named by the single parameter exists."""
        ...


# =========================================================================
# Concrete Dialect Implementations
# =========================================================================


def _update_clause(
    columns: list[str],
    key_columns: list[str],
    update_exprs: dict[str, str] | None,
    new_alias: str,
    table: str,
) -> str:
    update_exprs = update_exprs or {}
    parts = []
    for c in columns:
        if c in key_columns:
            continue
        expr = update_exprs.get(c, "{new}")
        parts.append(f"{c} = " + expr.format(new=f"{new_alias}.{c}", old=f"{table}.{c}"))
    return ", ".join(parts)


class SQLiteDialect:
    """SQLite dialect - ``?`` placeholders, ``BEGIN IMMEDIATE`` claims."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        return f"INSERT OR IGNORE INTO {table} ({cols}) VALUES ({ph})"

    def upsert(
        self,
        table: str,
        columns: list[str],
        key_columns: list[str],
        update_exprs: dict[str, str] | None = None,
    ) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        keys = ", ".join(key_columns)
        updates = _update_clause(columns, key_columns, update_exprs, "excluded", table)
        return (
            f"INSERT INTO {table} ({cols}) VALUES ({ph}) "
            f"ON CONFLICT ({keys}) DO UPDATE SET {updates}"
        )

    def overdue_seconds(self, column: str) -> str:
        return f"((julianday(?) - julianday({column})) * 86400.0)"

    def ln(self, expr: str) -> str:
        # Registered on the connection by SqliteConnection
        return f"ln({expr})"

    def skip_locked(self, alias: str) -> str:  # noqa: ARG002
        return ""

    def begin_exclusive(self) -> str | None:
        return "BEGIN IMMEDIATE"

    def auto_increment(self) -> str:
        return "INTEGER PRIMARY KEY AUTOINCREMENT"

    def timestamp_type(self) -> str:
        return "TEXT"

    def table_exists_query(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type='table' AND name = ?"


class PostgreSQLDialect:
    """PostgreSQL dialect - ``%s`` placeholders (psycopg2), ``SKIP LOCKED`` claims."""

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        return f"INSERT INTO {table} ({cols}) VALUES ({ph}) ON CONFLICT DO NOTHING"

    def upsert(
        self,
        table: str,
        columns: list[str],
        key_columns: list[str],
        update_exprs: dict[str, str] | None = None,
    ) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        keys = ", ".join(key_columns)
        updates = _update_clause(columns, key_columns, update_exprs, "EXCLUDED", table)
        return (
            f"INSERT INTO {table} ({cols}) VALUES ({ph}) "
            f"ON CONFLICT ({keys}) DO UPDATE SET {updates}"
        )

    def overdue_seconds(self, column: str) -> str:
        return f"EXTRACT(EPOCH FROM (CAST(%s AS TIMESTAMPTZ) - {column}))"

    def ln(self, expr: str) -> str:
        return f"LN({expr})"

    def skip_locked(self, alias: str) -> str:
        return f" FOR UPDATE OF {alias} SKIP LOCKED"

    def begin_exclusive(self) -> str | None:
        return None

    def auto_increment(self) -> str:
        return "BIGSERIAL PRIMARY KEY"

    def timestamp_type(self) -> str:
        return "TIMESTAMPTZ"

    def table_exists_query(self) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_name = %s"
        )


# =========================================================================
# Registry / Factory
# =========================================================================

# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),  # alias
}


def get_dialect(db_type: str) -> Dialect:
    """Get a dialect by database type name.

    Raises:
        ValueError: If ``db_type`` is not recognised.
    """
    key = db_type.lower()
    if key not in _DIALECTS:
        raise ValueError(
            f"Unknown dialect '{db_type}'. "
            f"Supported: {sorted(set(_DIALECTS) - {'postgres'})}"
        )
    return _DIALECTS[key]


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
]
