"""Process settings for cronspine agents and the CLI.

``CronSettings`` covers what a process needs before it can reach the
datastore: where the database is, which table prefix to use, how to log,
and which modules register task handlers. Scheduler tunables (enabled
flag, thread ceiling, retry intervals) live in the ``{prefix}settings``
table instead, so they can change while agents are running.

Fields
──────
database_url       : SQLite path/URL or PostgreSQL URL
table_prefix       : Prefix for the four scheduler tables
log_level          : Structlog log level
json_logs          : JSON output (None = auto-detect from tty)
batch_size         : Instances claimed per batch by ``cronspine run``
handler_modules    : Modules imported at startup to register handlers
enforce_time_limit : Abort handlers that exceed their task's ``max_time``

Examples:
    >>> import os
    >>> os.environ["CRONSPINE_BATCH_SIZE"] = "5"
    >>> CronSettings().batch_size
    5
"""

from __future__ import annotations

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PREFIX_RE = re.compile(r"^[A-Za-z0-9_]{0,53}$")


class CronSettings(BaseSettings):
    """Environment-driven settings, prefix ``CRONSPINE_``."""

    model_config = SettingsConfigDict(
        env_prefix="CRONSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = "cron.db"
    table_prefix: str = "cron__"

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Execution ────────────────────────────────────────────────
    batch_size: int = Field(default=1, ge=1)
    handler_modules: list[str] = Field(default_factory=list)
    enforce_time_limit: bool = False

    @field_validator("table_prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        if not _PREFIX_RE.match(value):
            raise ValueError("table_prefix must be up to 53 letters, digits or underscores")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level {value!r}")
        return value


__all__ = ["CronSettings"]
