"""SQLite connection adapter.

Wraps a raw :class:`sqlite3.Connection` to satisfy the
:class:`~cronspine.core.protocols.Connection` protocol.

Besides bridging ``fetchone()`` / ``fetchall()`` to the connection level,
the adapter prepares every connection for the scheduler:

* registers an ``ln()`` SQL function (the claim query ranks by
  ``ln(overdue + 2)``; SQLite only ships it with the math extension),
* enables foreign keys so deleting a task cascades to its instances,
* sets a busy timeout so a second agent waits for ``BEGIN IMMEDIATE``
  instead of failing with ``database is locked``.

Usage::

    conn = SqliteConnection("cron.db")
    conn.execute("SELECT ln(?)", (2.0,))
    conn.fetchone()
"""

from __future__ import annotations

import math
import sqlite3
from typing import Any

DEFAULT_BUSY_TIMEOUT = 30.0


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    Maintains a single cursor so that ``execute`` / ``fetchone`` /
    ``fetchall`` operate on the same result set.
    """

    def __init__(
        self,
        path: str = ":memory:",
        *,
        row_factory: Any = sqlite3.Row,
        timeout: float = DEFAULT_BUSY_TIMEOUT,
    ) -> None:
        self._conn = sqlite3.connect(path, timeout=timeout, check_same_thread=False)
        self._conn.row_factory = row_factory
        self._conn.create_function("ln", 1, _ln, deterministic=True)
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._cursor = self._conn.cursor()

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        self._cursor.execute(sql, params)
        return self._cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        self._cursor.executemany(sql, params)
        return self._cursor

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    # -- convenience -------------------------------------------------------

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self._conn!r})"


def _ln(value: float | None) -> float | None:
    if value is None or value <= 0:
        return None
    return math.log(value)
