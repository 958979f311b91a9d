"""Scheduling API - task definitions and task instances.

Used by operators and embedding applications to manage what runs; the
agent's own cycle only reads through these classes.

┌──────────────────────────────────────────────────────────────────────────┐
│  SCHEDULING API                                                          │
│                                                                          │
│  ┌─────────────────────────────┐    ┌──────────────────────────────────┐ │
│  │ TaskRepository              │    │ InstanceRepository               │ │
│  │                             │    │                                  │ │
│  │ add(definition)   upsert    │    │ add(instance)       upsert       │ │
│  │ get(name) / require(name)   │    │ get(key) / require(key)          │ │
│  │ list()                      │    │ list(task=None)                  │ │
│  │ delete(name)   non-system   │    │ delete(key)         non-system   │ │
│  │ set_system(name)            │    │ remove(key, ...)    two-step     │ │
│  │ set_enabled(name, flag)     │    │ set_system(key)     recurring    │ │
│  │                             │    │ set_enabled(key, flag)           │ │
│  └─────────────────────────────┘    └──────────────────────────────────┘ │
│                                                                          │
│  Every mutation that changed a row logs a Task* / Instance* event;       │
│  datastore failures log the matching *Fail event and raise               │
│  DatastoreError. Invalid input raises ValidationError before any write.  │
└──────────────────────────────────────────────────────────────────────────┘

Instance upsert keeps the stored ``next_run`` of one-time instances and
the higher of the two priorities, so re-queueing a pending one-time job
never pushes it back or lowers its urgency.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, TypeVar

import pydantic

from cronspine.core.dialect import Dialect
from cronspine.core.errors import (
    DatastoreError,
    InstanceNotFoundError,
    TaskNotFoundError,
    ValidationError,
)
from cronspine.core.logging import get_logger
from cronspine.core.protocols import Connection
from cronspine.core.repository import BaseRepository
from cronspine.core.schema import DEFAULT_PREFIX
from cronspine.core.timestamps import to_db, utc_now
from cronspine.scheduling.events import EventLog, EventType
from cronspine.scheduling.models import InstanceKey, InstanceStatus, TaskDefinition, TaskInstance

logger = get_logger(__name__)

M = TypeVar("M", bound=pydantic.BaseModel)

TASK_COLUMNS = [
    "name",
    "handler",
    "object_ref",
    "parameters",
    "allowed_returns",
    "max_time",
    "min_frequency",
    "retry",
    "enabled",
    "system",
    "description",
]

INSTANCE_COLUMNS = [
    "task",
    "arguments",
    "instance",
    "enabled",
    "system",
    "frequency",
    "day_of_month",
    "day_of_week",
    "priority",
    "message",
    "status",
    "run_by",
    "registered",
    "updated",
    "next_run",
    "last_run",
    "last_success",
    "last_error",
]


def validate_model(model: type[M], data: M | dict[str, Any]) -> M:
    """Build ``model`` from ``data``, raising cronspine's ``ValidationError``."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ValidationError(f"Invalid {model.__name__}: {first['msg']}", field=field, cause=e) from e


class _EventedRepository(BaseRepository):
    """Repository whose mutations are reported to an ``EventLog``."""

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        prefix: str = DEFAULT_PREFIX,
        *,
        events: EventLog | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(conn, dialect, prefix)
        self.clock = clock
        self.events = events or EventLog(conn, self.dialect, prefix, clock=clock)

    @contextmanager
    def mutation(
        self,
        operation: str,
        fail_message: str,
        fail_event: EventType,
        instance: InstanceKey | None = None,
    ) -> Iterator[None]:
        """``transaction()`` that logs ``fail_event`` before re-raising."""
        try:
            with self.transaction(operation):
                yield
        except DatastoreError as e:
            self.events.log(fail_message, fail_event, error=e.cause or e, instance=instance)
            raise


class TaskRepository(_EventedRepository):
    """Task definition management (``{prefix}tasks``)."""

    def add(self, definition: TaskDefinition | dict[str, Any]) -> TaskDefinition:
        """Insert or update a definition. ``enabled``/``system`` are kept on update."""
        definition = validate_model(TaskDefinition, definition)
        sql = self.dialect.upsert(
            self.table("tasks"),
            TASK_COLUMNS,
            ["name"],
            update_exprs={"enabled": "{old}", "system": "{old}"},
        )
        params = (
            definition.name,
            definition.handler,
            definition.object_ref,
            definition.parameters_json(),
            definition.allowed_returns_json(),
            definition.max_time,
            definition.min_frequency,
            definition.retry,
            int(definition.enabled),
            int(definition.system),
            definition.description,
        )
        details = f"`{definition.name}` -> {definition.object_ref + '.' if definition.object_ref else ''}{definition.handler}"
        with self.mutation(
            f"add task {definition.name}",
            f"Failed to add or update task {details}.",
            EventType.TaskAddFail,
        ):
            cur = self.execute(sql, params)
        if cur.rowcount:
            self.events.log(f"Added or updated task {details}.", EventType.TaskAdd)
        return definition

    def get(self, name: str) -> TaskDefinition | None:
        with self.guard(f"get task {name}"):
            row = self.query_one(
                f"SELECT {', '.join(TASK_COLUMNS)} FROM {self.table('tasks')} "
                f"WHERE name = {self.dialect.placeholder(0)}",
                (name,),
            )
        return TaskDefinition.model_validate(row) if row else None

    def require(self, name: str) -> TaskDefinition:
        definition = self.get(name)
        if definition is None:
            raise TaskNotFoundError(name)
        return definition

    def list(self) -> list[TaskDefinition]:
        with self.guard("list tasks"):
            rows = self.query(
                f"SELECT {', '.join(TASK_COLUMNS)} FROM {self.table('tasks')} ORDER BY name"
            )
        return [TaskDefinition.model_validate(row) for row in rows]

    def delete(self, name: str) -> bool:
        """Delete a non-system definition and, by cascade, its instances."""
        p = self.dialect.placeholder(0)
        with self.mutation(f"delete task {name}", f"Failed to delete task `{name}`.", EventType.TaskDeleteFail):
            cur = self.execute(
                f"DELETE FROM {self.table('tasks')} WHERE name = {p} AND system = 0", (name,)
            )
        if cur.rowcount > 0:
            self.events.log(f"Deleted task `{name}`.", EventType.TaskDelete)
            return True
        return False

    def set_system(self, name: str) -> bool:
        """Protect a definition from deletion. Irreversible through the API."""
        p = self.dialect.placeholder(0)
        with self.mutation(
            f"mark task {name} system",
            f"Failed to mark task `{name}` as system one.",
            EventType.TaskToSystemFail,
        ):
            cur = self.execute(
                f"UPDATE {self.table('tasks')} SET system = 1 WHERE name = {p} AND system = 0",
                (name,),
            )
        if cur.rowcount > 0:
            self.events.log(f"Marked task `{name}` as system one.", EventType.TaskToSystem)
            return True
        return False

    def set_enabled(self, name: str, enabled: bool = True) -> bool:
        verb = "enable" if enabled else "disable"
        event = EventType.TaskEnable if enabled else EventType.TaskDisable
        fail = EventType.TaskEnableFail if enabled else EventType.TaskDisableFail
        p = self.dialect.placeholder(0)
        with self.mutation(f"{verb} task {name}", f"Failed to {verb} task `{name}`.", fail):
            cur = self.execute(
                f"UPDATE {self.table('tasks')} SET enabled = {p} WHERE name = {p} AND enabled != {p}",
                (int(enabled), name, int(enabled)),
            )
        if cur.rowcount > 0:
            self.events.log(f"{verb.capitalize()}d task `{name}`.", event)
            return True
        return False


class InstanceRepository(_EventedRepository):
    """Task instance management (``{prefix}schedule``)."""

    def _key_clause(self) -> str:
        p = self.dialect.placeholder(0)
        return f"task = {p} AND arguments = {p} AND instance = {p}"

    @staticmethod
    def _key_params(key: InstanceKey) -> tuple:
        return (key.task, key.arguments, key.instance)

    def add(
        self,
        instance: TaskInstance | dict[str, Any],
        tasks: TaskRepository | None = None,
    ) -> TaskInstance:
        """Insert or update an instance.

        ``next_run`` defaults to now. On update the stored ``enabled``,
        ``system`` and ``status`` are kept.

        Raises:
            ValidationError: Bad field values, or a recurring frequency
                below the definition's ``min_frequency``.
            TaskNotFoundError: No definition named ``instance.task``.
        """
        instance = validate_model(TaskInstance, instance)
        tasks = tasks or TaskRepository(self.conn, self.dialect, self.prefix, events=self.events, clock=self.clock)
        definition = tasks.require(instance.task)
        if 0 < instance.frequency < definition.min_frequency:
            raise ValidationError(
                f"frequency for `{instance.task}` should be either 0 (one-time job) "
                f"or at least {definition.min_frequency} seconds",
                field="frequency",
            )
        existing = self.get(instance.key)
        if existing is not None and existing.system and instance.one_time:
            raise ValidationError(
                "frequency cannot be set to 0 (one-time job) for a system instance",
                field="frequency",
            )

        now = self.clock()
        next_run = instance.next_run or now
        sql = self.dialect.upsert(
            self.table("schedule"),
            INSTANCE_COLUMNS[:15],
            ["task", "arguments", "instance"],
            update_exprs={
                "enabled": "{old}",
                "system": "{old}",
                "status": "{old}",
                "run_by": "{old}",
                "registered": "{old}",
                "next_run": "CASE WHEN excluded.frequency = 0 THEN {old} ELSE {new} END",
                "priority": (
                    "CASE WHEN excluded.frequency = 0 AND {old} > {new} THEN {old} ELSE {new} END"
                ),
            },
        )
        params = (
            instance.task,
            instance.arguments,
            instance.instance,
            int(instance.enabled),
            int(instance.system),
            instance.frequency,
            instance.day_of_month_json(),
            instance.day_of_week_json(),
            instance.priority,
            instance.message,
            int(InstanceStatus.IDLE),
            None,
            to_db(now),
            to_db(now),
            to_db(next_run),
        )
        key = instance.key
        with self.mutation(
            f"add instance {key}",
            "Failed to add or update task instance.",
            EventType.InstanceAddFail,
            instance=key,
        ):
            cur = self.execute(sql, params)
        if cur.rowcount:
            self.events.log("Added or updated task instance.", EventType.InstanceAdd, instance=key)
        return self.get(key) or instance

    def get(self, key: InstanceKey) -> TaskInstance | None:
        with self.guard(f"get instance {key}"):
            row = self.query_one(
                f"SELECT {', '.join(INSTANCE_COLUMNS)} FROM {self.table('schedule')} "
                f"WHERE {self._key_clause()}",
                self._key_params(key),
            )
        return TaskInstance.model_validate(row) if row else None

    def require(self, key: InstanceKey) -> TaskInstance:
        instance = self.get(key)
        if instance is None:
            raise InstanceNotFoundError(key.task, key.arguments, key.instance)
        return instance

    def list(self, task: str | None = None) -> list[TaskInstance]:
        """Instances ordered by due time, optionally for one task."""
        sql = f"SELECT {', '.join(INSTANCE_COLUMNS)} FROM {self.table('schedule')}"
        params: tuple = ()
        if task is not None:
            sql += f" WHERE task = {self.dialect.placeholder(0)}"
            params = (task,)
        sql += " ORDER BY next_run, task, arguments, instance"
        with self.guard("list instances"):
            rows = self.query(sql, params)
        return [TaskInstance.model_validate(row) for row in rows]

    def delete(self, key: InstanceKey) -> bool:
        """Delete a non-system instance. Returns False if missing or protected."""
        existing = self.get(key)
        if existing is None or existing.system:
            return False
        return self.remove(key, frequency=existing.frequency)

    def remove(self, key: InstanceKey, *, frequency: int, owner: str | None = None) -> bool:
        """Two-step removal: mark PENDING_REMOVAL, then delete.

        If the delete fails the committed marker stays behind and hang
        recovery sweeps the row. With ``owner`` set, only a row still
        claimed by that token is removed.

        Raises:
            DatastoreError: Either step failed.
        """
        p = self.dialect.placeholder(0)
        table = self.table("schedule")
        owner_clause = f" AND run_by = {p}" if owner is not None else ""
        owner_params = (owner,) if owner is not None else ()

        with self.mutation(
            f"mark instance {key} for removal",
            "Failed to delete task instance.",
            EventType.InstanceDeleteFail,
            instance=key,
        ):
            cur = self.execute(
                f"UPDATE {table} SET status = {int(InstanceStatus.PENDING_REMOVAL)}, "
                f"run_by = NULL, updated = {p} "
                f"WHERE {self._key_clause()} AND system = 0{owner_clause}",
                (to_db(self.clock()), *self._key_params(key), *owner_params),
            )
        if cur.rowcount <= 0:
            return False

        with self.mutation(
            f"delete instance {key}",
            "Failed to delete task instance.",
            EventType.InstanceDeleteFail,
            instance=key,
        ):
            cur = self.execute(
                f"DELETE FROM {table} WHERE {self._key_clause()} "
                f"AND status = {int(InstanceStatus.PENDING_REMOVAL)}",
                self._key_params(key),
            )
        if frequency > 0 and cur.rowcount > 0:
            self.events.log("Deleted task instance.", EventType.InstanceDelete, instance=key)
        return True

    def set_system(self, key: InstanceKey) -> bool:
        """Protect a recurring instance from deletion.

        Raises:
            InstanceNotFoundError: No such instance.
            ValidationError: The instance is one-time.
        """
        existing = self.require(key)
        if existing.one_time:
            raise ValidationError("One-time job cannot be made system one", field="system")
        with self.mutation(
            f"mark instance {key} system",
            "Failed to mark task instance as system one.",
            EventType.InstanceToSystemFail,
            instance=key,
        ):
            cur = self.execute(
                f"UPDATE {self.table('schedule')} SET system = 1 "
                f"WHERE {self._key_clause()} AND system = 0",
                self._key_params(key),
            )
        if cur.rowcount > 0:
            self.events.log("Marked task instance as system one.", EventType.InstanceToSystem, instance=key)
            return True
        return False

    def set_enabled(self, key: InstanceKey, enabled: bool = True) -> bool:
        verb = "enable" if enabled else "disable"
        event = EventType.InstanceEnable if enabled else EventType.InstanceDisable
        fail = EventType.InstanceEnableFail if enabled else EventType.InstanceDisableFail
        p = self.dialect.placeholder(0)
        with self.mutation(f"{verb} instance {key}", f"Failed to {verb} task instance.", fail, instance=key):
            cur = self.execute(
                f"UPDATE {self.table('schedule')} SET enabled = {p} "
                f"WHERE {self._key_clause()} AND enabled != {p}",
                (int(enabled), *self._key_params(key), int(enabled)),
            )
        if cur.rowcount > 0:
            self.events.log(f"{verb.capitalize()}d task instance.", event, instance=key)
            return True
        return False


__all__ = [
    "INSTANCE_COLUMNS",
    "InstanceRepository",
    "TASK_COLUMNS",
    "TaskRepository",
    "validate_model",
]
