"""
Shared pytest fixtures for cronspine tests.

This module provides:
- A file-backed SQLite datastore with the scheduler schema installed
- A controllable clock (``FakeClock`` from ``tests._support``) injected wherever "now" is read
- An isolated handler registry per test
- Repositories and a state machine wired to that clock

Usage:
    def test_something(db, clock, tasks, instances):
        tasks.add({"name": "backup", "handler": "noop"})
        instances.add({"task": "backup", "frequency": 3600})
        clock.advance(3600)
"""

from __future__ import annotations

from pathlib import Path

import pytest

from cronspine.core.dialect import SQLiteDialect
from cronspine.core.logging import clear_context
from cronspine.core.schema import DEFAULT_PREFIX, create_schema
from cronspine.core.sqlite_conn import SqliteConnection
from cronspine.execution.executor import Executor
from cronspine.execution.handlers import register_builtins
from cronspine.execution.registry import HandlerRegistry, reset_default_registry
from cronspine.scheduling.config import SchedulerConfig, SettingsRepository
from cronspine.scheduling.events import EventLog
from cronspine.scheduling.repository import InstanceRepository, TaskRepository
from cronspine.scheduling.state import InstanceStateMachine
from tests._support.helpers import FakeClock

# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_global_state():
    """Fresh default registry and logging context for every test."""
    reset_default_registry()
    clear_context()
    yield
    reset_default_registry()
    clear_context()


# =============================================================================
# Datastore
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "cron.db"


@pytest.fixture
def dialect() -> SQLiteDialect:
    return SQLiteDialect()


@pytest.fixture
def db(db_path: Path, dialect: SQLiteDialect):
    """SQLite connection with the scheduler schema installed."""
    conn = SqliteConnection(str(db_path))
    create_schema(conn, dialect, DEFAULT_PREFIX)
    yield conn
    conn.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> HandlerRegistry:
    """Registry holding the built-ins plus a few test handlers."""
    reg = register_builtins(HandlerRegistry())
    reg.register("ok", lambda *a, **kw: True)
    reg.register("nope", lambda *a, **kw: False)
    return reg


@pytest.fixture
def executor(registry: HandlerRegistry) -> Executor:
    return Executor(registry)


@pytest.fixture
def events(db, dialect, clock) -> EventLog:
    return EventLog(db, dialect, DEFAULT_PREFIX, clock=clock)


@pytest.fixture
def tasks(db, dialect, clock, events) -> TaskRepository:
    return TaskRepository(db, dialect, DEFAULT_PREFIX, events=events, clock=clock)


@pytest.fixture
def instances(db, dialect, clock, events) -> InstanceRepository:
    return InstanceRepository(db, dialect, DEFAULT_PREFIX, events=events, clock=clock)


@pytest.fixture
def settings_repo(db, dialect) -> SettingsRepository:
    return SettingsRepository(db, dialect, DEFAULT_PREFIX)


@pytest.fixture
def config(settings_repo) -> SchedulerConfig:
    """Snapshot of the seeded settings (enabled, retry 3600, ...)."""
    return settings_repo.refresh()


@pytest.fixture
def machine(db, dialect, clock, executor, events) -> InstanceStateMachine:
    return InstanceStateMachine(
        db, dialect, DEFAULT_PREFIX, executor=executor, events=events, clock=clock
    )

