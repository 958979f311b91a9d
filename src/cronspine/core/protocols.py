"""
Canonical protocol definitions for cronspine.

Every module that needs a database connection or a clock imports the
contract from here, so the scheduling engine runs unchanged on SQLite
and PostgreSQL and under a fixed clock in tests.

Architecture:
    ::

        protocols.py
        ├── Connection   - sync DB protocol (SqliteConnection, SAConnectionBridge)
        └── Clock        - source of "now" (aware UTC datetimes)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface for database operations.

    ``execute`` returns a cursor-like object whose ``rowcount`` reports
    the rows touched by the last UPDATE/DELETE. The claim selector and
    the state machine rely on that count to detect lost races.

    Architecture:
        ::

            Connection Protocol:
            ┌────────────────────────────────────────────────────────┐
            │ execute(sql, params)   → Execute single statement      │
            │ executemany(sql, list) → Execute for multiple params   │
            │ fetchone()             → Get one result row            │
            │ fetchall()             → Get all result rows           │
            │ commit()               → Commit transaction            │
            │ rollback()             → Rollback transaction          │
            └────────────────────────────────────────────────────────┘

    Examples:
        >>> cur = conn.execute("UPDATE t SET status = 1 WHERE status = 0", ())
        >>> cur.rowcount
        1
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters. SYNC."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute SQL statement for multiple parameter sets. SYNC."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from last query. SYNC."""
        ...

    def fetchall(self) -> list:
        """Fetch all rows from last query. SYNC."""
        ...

    def commit(self) -> None:
        """Commit current transaction. SYNC."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction. SYNC."""
        ...


class Clock(Protocol):
    """Callable returning the current time as an aware UTC datetime."""

    def __call__(self) -> datetime: ...


__all__ = ["Connection", "Clock"]
