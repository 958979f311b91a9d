"""cronspine.core -- platform primitives shared by every layer.

Architecture::

    errors.py       Structured error hierarchy (CronError, DatastoreError, ...)
    result.py       Result[T] envelope (Ok / Err / try_result)
    logging.py      structlog configuration and LogContext
    protocols.py    Connection and Clock protocols
    timestamps.py   UTC helpers and storage format
    dialect.py      SQLite / PostgreSQL SQL fragments
    sqlite_conn.py  SQLite Connection adapter
    sa_bridge.py    SQLAlchemy Connection bridge (PostgreSQL)
    connection.py   create_connection() factory
    schema.py       Table DDL and settings seed
    settings.py     CronSettings (pydantic-settings, CRONSPINE_ env prefix)
"""

from cronspine.core.errors import (
    ConfigError,
    CronError,
    DatastoreError,
    ErrorCategory,
    ScheduleError,
    ValidationError,
)
from cronspine.core.result import Err, Ok, Result, try_result

__all__ = [
    "ConfigError",
    "CronError",
    "DatastoreError",
    "ErrorCategory",
    "ScheduleError",
    "ValidationError",
    "Err",
    "Ok",
    "Result",
    "try_result",
]
