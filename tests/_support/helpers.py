"""Test helpers: a controllable clock and datastore builders.

Usage::

    from tests._support.helpers import T0, FakeClock, add_instance, add_task
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from cronspine.core.schema import DEFAULT_PREFIX
from cronspine.scheduling.repository import InstanceRepository, TaskRepository

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)
"""Wednesday, 2025-01-01 12:00 UTC."""


class FakeClock:
    """Callable clock returning a settable instant."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now

    def set(self, when: datetime) -> datetime:
        self.now = when
        return self.now


def add_task(repo: TaskRepository, name: str = "job", handler: str = "ok", **fields: Any):
    """Definition with test-friendly limits (min_frequency 60, no task retry)."""
    data = {"name": name, "handler": handler, "min_frequency": 60, "retry": 0}
    data.update(fields)
    return repo.add(data)


def add_instance(repo: InstanceRepository, task: str = "job", **fields: Any):
    data: dict[str, Any] = {"task": task}
    data.update(fields)
    return repo.add(data)


def fetch_log(conn, prefix: str = DEFAULT_PREFIX) -> list[dict[str, Any]]:
    """All log rows, oldest first."""
    conn.execute(f"SELECT * FROM {prefix}log ORDER BY id")
    return [dict(r) for r in conn.fetchall()]


def log_types(conn, prefix: str = DEFAULT_PREFIX) -> list[int]:
    return [row["type"] for row in fetch_log(conn, prefix)]


def fetch_row(conn, task: str, arguments: str = "", instance: int = 1, prefix: str = DEFAULT_PREFIX):
    """Raw schedule row (or None)."""
    conn.execute(
        f"SELECT * FROM {prefix}schedule WHERE task = ? AND arguments = ? AND instance = ?",
        (task, arguments, instance),
    )
    row = conn.fetchone()
    return dict(row) if row is not None else None
