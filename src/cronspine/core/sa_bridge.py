"""SQLAlchemy engine factory and Connection bridge.

``SAConnectionBridge`` wraps a SQLAlchemy ``Session`` so PostgreSQL is
reached through the same ``Connection`` protocol as SQLite. Scheduler SQL
is written with dialect placeholders (``%s`` on PostgreSQL); the bridge
rewrites them to SQLAlchemy named binds before execution.

This module provides:

* ``create_cron_engine``  -- Create a SA engine with pool settings.
* ``CronSession``         -- Session with ``expire_on_commit=False``.
* ``SAConnectionBridge``  -- Session → ``Connection`` protocol.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session


def create_cron_engine(
    url: str,
    *,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    pool_timeout: int | None = None,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``postgresql://…``).
    echo:
        If ``True``, log all SQL to stdout.
    pool_size, max_overflow, pool_timeout:
        Connection pool parameters.
    """
    pool_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if pool_size is not None:
        pool_kwargs["pool_size"] = pool_size
    if max_overflow is not None:
        pool_kwargs["max_overflow"] = max_overflow
    if pool_timeout is not None:
        pool_kwargs["pool_timeout"] = pool_timeout

    return _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)


class CronSession(Session):
    """Pre-configured session with ``expire_on_commit=False``."""

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def _rewrite_placeholders(sql: str, token: str) -> str:
    """Replace positional ``token`` markers with ``:p0``, ``:p1``, …"""
    parts = sql.split(token)
    if len(parts) == 1:
        return sql
    rewritten = [parts[0]]
    for idx, part in enumerate(parts[1:]):
        rewritten.append(f":p{idx}")
        rewritten.append(part)
    return "".join(rewritten)


class SAConnectionBridge:
    """Adapter that makes a SQLAlchemy ``Session`` look like ``Connection``.

    ``execute`` returns the SQLAlchemy result so callers can read
    ``rowcount``. Rows come back as plain dicts keyed by column name.
    """

    def __init__(self, session: Session, *, placeholder: str = "%s") -> None:
        self._session = session
        self._placeholder = placeholder
        self._last_result: Any = None

    def execute(self, sql: str, parameters: Sequence[Any] | None = None) -> Any:
        if parameters:
            mapping = {f"p{i}": v for i, v in enumerate(parameters)}
            stmt = text(_rewrite_placeholders(sql, self._placeholder))
            self._last_result = self._session.execute(stmt, mapping)
        else:
            self._last_result = self._session.execute(text(sql))
        return self._last_result

    def executemany(self, sql: str, seq_of_parameters: Sequence[Sequence[Any]]) -> None:
        for params in seq_of_parameters:
            self.execute(sql, params)

    def fetchone(self) -> dict[str, Any] | None:
        if self._last_result is None or not self._last_result.returns_rows:
            return None
        row = self._last_result.fetchone()
        return dict(row._mapping) if row is not None else None

    def fetchall(self) -> list[dict[str, Any]]:
        if self._last_result is None or not self._last_result.returns_rows:
            return []
        return [dict(r._mapping) for r in self._last_result.fetchall()]

    def commit(self) -> None:
        self._session.commit()

    def rollback(self) -> None:
        self._session.rollback()

    def close(self) -> None:
        self._session.close()

    @property
    def session(self) -> Session:
        """Access the underlying SA session."""
        return self._session
