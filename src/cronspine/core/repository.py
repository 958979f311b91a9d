"""Base repository with dialect-aware database access.

Pairs a :class:`~cronspine.core.protocols.Connection` with a
:class:`~cronspine.core.dialect.Dialect` and the table prefix, so the
scheduler's repositories write portable SQL against prefixed tables.

Architecture::

    ┌────────────────────────────────────────────────────────────────────┐
    │                       BaseRepository                               │
    │                                                                    │
    │   conn: Connection        ← protocol from cronspine.core.protocols │
    │   dialect: Dialect        ← from cronspine.core.dialect            │
    │   prefix: str             ← "cron__" by default                    │
    │                                                                    │
    │   table(name)              → "{prefix}{name}"                      │
    │   execute(sql, params)     → cursor                                │
    │   query(sql, params)       → list[dict]                            │
    │   query_one(sql, params)   → dict | None                           │
    │   transaction()            → commit / rollback + DatastoreError    │
    └────────────────────────────────────────────────────────────────────┘

Driver exceptions never leave a repository raw: ``transaction()`` and
``guard()`` translate them into ``DatastoreError`` with the original
chained as the cause.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from cronspine.core.dialect import Dialect, SQLiteDialect
from cronspine.core.errors import DatastoreError
from cronspine.core.protocols import Connection
from cronspine.core.schema import DEFAULT_PREFIX, validate_prefix

DB_ERRORS: tuple[type[Exception], ...] = (sqlite3.Error, SQLAlchemyError)
"""Driver exceptions treated as datastore failures."""


class BaseRepository:
    """Dialect-aware base class for data-access repositories.

    Parameters:
        conn: Any object satisfying the :class:`Connection` protocol.
        dialect: SQL dialect to use. Defaults to :class:`SQLiteDialect`.
        prefix: Table name prefix.
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        prefix: str = DEFAULT_PREFIX,
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.prefix = validate_prefix(prefix)

    # -- Convenience shortcuts ---------------------------------------------

    def table(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def ph(self, count: int = 1) -> str:
        """Shortcut for ``self.dialect.placeholders(count)``."""
        return self.dialect.placeholders(count)

    # -- Query helpers -----------------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute a statement and return the raw cursor/result."""
        return self.conn.execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute a SELECT and return rows as dicts."""
        self.conn.execute(sql, params)
        return [dict(row) for row in self.conn.fetchall()]

    def query_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        """Execute a SELECT and return the first row as a dict (or None)."""
        self.conn.execute(sql, params)
        row = self.conn.fetchone()
        return dict(row) if row is not None else None

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()

    # -- Error translation -------------------------------------------------

    @contextmanager
    def transaction(self, operation: str) -> Iterator[None]:
        """Commit on success; roll back and raise ``DatastoreError`` on driver errors."""
        try:
            yield
            self.conn.commit()
        except DB_ERRORS as e:
            self._safe_rollback()
            raise DatastoreError(f"{operation} failed: {e}", cause=e) from e

    @contextmanager
    def guard(self, operation: str) -> Iterator[None]:
        """Translate driver errors for read-only statements."""
        try:
            yield
        except DB_ERRORS as e:
            self._safe_rollback()
            raise DatastoreError(f"{operation} failed: {e}", cause=e) from e

    def _safe_rollback(self) -> None:
        try:
            self.conn.rollback()
        except DB_ERRORS:
            # Connection already gone
            pass


__all__ = ["BaseRepository", "DB_ERRORS"]
