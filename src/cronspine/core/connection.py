"""Connection factory - create database connections from URL strings.

This is the single entry point for opening the scheduler datastore.
Every agent, CLI command and test obtains its connection from
``create_connection()``.

Supported URL schemes
---------------------
==================  ==========================================  ============
Scheme              Example                                     Backend
==================  ==========================================  ============
``memory``          ``memory`` or ``:memory:`` or ``None``       SQLite RAM
``sqlite``          ``sqlite:///path/to/file.db``                SQLite file
``(file path)``     ``./data/cron.db``                           SQLite file
``postgresql``      ``postgresql://user:pw@host:port/db``        PostgreSQL
``postgres``        ``postgres://user:pw@host:port/db``          PostgreSQL
==================  ==========================================  ============

``create_connection()`` returns ``(conn, ConnectionInfo)``; the info
carries the backend name so callers can pick the matching ``Dialect``.
Unlike a demo environment, an unreachable PostgreSQL is not papered over
with an in-memory fallback: it raises ``DatastoreError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cronspine.core.dialect import Dialect, get_dialect
from cronspine.core.errors import DatastoreError
from cronspine.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConnectionInfo:
    """Metadata about a database connection."""

    backend: str
    """Backend identifier: ``"sqlite"`` or ``"postgresql"``."""

    persistent: bool
    """Whether data survives process exit."""

    url: str
    """The original URL or path used to create the connection."""

    resolved_path: str | None = None
    """For file-based SQLite, the resolved absolute path."""

    @property
    def is_sqlite(self) -> bool:
        return self.backend == "sqlite"

    @property
    def is_postgres(self) -> bool:
        return self.backend == "postgresql"

    @property
    def dialect(self) -> Dialect:
        return get_dialect(self.backend)


def _create_sqlite_memory() -> tuple[Any, ConnectionInfo]:
    from cronspine.core.sqlite_conn import SqliteConnection

    conn = SqliteConnection(":memory:")
    return conn, ConnectionInfo(backend="sqlite", persistent=False, url=":memory:")


def _create_sqlite_file(path_str: str) -> tuple[Any, ConnectionInfo]:
    from cronspine.core.sqlite_conn import SqliteConnection

    path = Path(path_str)
    path.parent.mkdir(parents=True, exist_ok=True)
    resolved = str(path.resolve())
    conn = SqliteConnection(resolved)
    info = ConnectionInfo(
        backend="sqlite",
        persistent=True,
        url=path_str,
        resolved_path=resolved,
    )
    return conn, info


def _create_postgresql(url: str) -> tuple[Any, ConnectionInfo]:
    """Create a PostgreSQL connection via the SQLAlchemy bridge."""
    from sqlalchemy.exc import SQLAlchemyError

    from cronspine.core.sa_bridge import CronSession, SAConnectionBridge, create_cron_engine

    try:
        engine = create_cron_engine(url)
        session = CronSession(bind=engine)
        conn = SAConnectionBridge(session, placeholder=get_dialect("postgresql").placeholder(0))
        conn.execute("SELECT 1")
        conn.commit()
    except SQLAlchemyError as e:
        logger.error("postgres_connect_failed", error=str(e))
        raise DatastoreError(f"Cannot connect to PostgreSQL: {e}", cause=e) from e
    return conn, ConnectionInfo(backend="postgresql", persistent=True, url=url)


def _parse_url(db: str | None) -> tuple[str, str]:
    """Parse a database URL into (scheme, target)."""
    if db is None or db in ("", "memory", ":memory:"):
        return "memory", ":memory:"

    for prefix in ("sqlite:///", "sqlite://"):
        if db.startswith(prefix):
            path = db[len(prefix):]
            if not path or path == ":memory:":
                return "memory", ":memory:"
            return "sqlite", path

    if db.startswith(("postgresql://", "postgres://")):
        return "postgresql", db

    if db.startswith(("postgresql+", "postgres+")):
        # Keep explicit sync drivers (postgresql+psycopg2://) as-is
        return "postgresql", db

    # Bare file path - treat as SQLite file
    return "file", db


def create_connection(
    db: str | None = None,
    *,
    init_schema: bool = False,
    table_prefix: str = "cron__",
) -> tuple[Any, ConnectionInfo]:
    """Create a database connection from a URL, path, or keyword.

    Parameters
    ----------
    db:
        Database URL, file path, or keyword (``None`` for in-memory SQLite).
    init_schema:
        If ``True``, create the scheduler tables (idempotent).
    table_prefix:
        Table name prefix used when ``init_schema`` is set.

    Examples
    --------
    ::

        conn, info = create_connection("cron.db", init_schema=True)
        dialect = info.dialect
    """
    scheme, target = _parse_url(db)

    if scheme == "memory":
        conn, info = _create_sqlite_memory()
    elif scheme in ("sqlite", "file"):
        conn, info = _create_sqlite_file(target)
    else:
        conn, info = _create_postgresql(target)

    logger.debug("connection_created", backend=info.backend, persistent=info.persistent)

    if init_schema:
        from cronspine.core.schema import create_schema

        create_schema(conn, info.dialect, prefix=table_prefix)

    return conn, info


__all__ = ["ConnectionInfo", "create_connection"]
