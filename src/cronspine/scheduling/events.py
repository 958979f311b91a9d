"""Event log and notification sink.

Every notable scheduler event goes through ``EventLog.log``, which fans it
out to three places:

1. structlog, at a level derived from the event type,
2. the ``{prefix}log`` table,
3. the caller's ``EventStream`` when the agent runs in streaming mode.

``log`` never raises. A failed log insert is reported through structlog
and otherwise ignored; fatal conditions are returned to the caller by the
run loop as a ``CycleResult``, not thrown from here.

Coalescing:
    ``CronDisabled``, ``CronEmpty`` and ``CronNoThreads`` repeat every idle
    cycle. When the newest log row already has the same type its message
    is refreshed with ``(last check at …)`` instead of inserting a new row,
    and such rows never carry a claim token.

Standalone events:
    Cycle, stream, task-definition and custom events describe no single
    instance. Every other event is attached to the instance passed in, or
    to the instance the agent is currently running.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from enum import IntEnum
from typing import Any

from cronspine.core.dialect import Dialect
from cronspine.core.logging import get_logger
from cronspine.core.protocols import Connection
from cronspine.core.repository import DB_ERRORS, BaseRepository
from cronspine.core.schema import DEFAULT_PREFIX
from cronspine.core.timestamps import from_db, to_db, utc_now
from cronspine.scheduling.models import InstanceKey
from cronspine.scheduling.stream import EventStream

logger = get_logger(__name__)


class EventType(IntEnum):
    """Log event types and their stored codes."""

    # Cycle
    CronDisabled = 100
    CronEmpty = 101
    CronNoThreads = 102
    CronFail = 103
    SSEStart = 110
    SSEEnd = 111
    # Task definitions
    TaskAdd = 200
    TaskDelete = 201
    TaskEnable = 202
    TaskDisable = 203
    TaskToSystem = 204
    TaskAddFail = 210
    TaskDeleteFail = 211
    TaskEnableFail = 212
    TaskDisableFail = 213
    TaskToSystemFail = 214
    # Task instances
    InstanceAdd = 300
    InstanceDelete = 301
    InstanceToSystem = 302
    InstanceEnable = 303
    InstanceDisable = 304
    Reschedule = 305
    InstanceStart = 306
    InstanceEnd = 307
    InstanceAddFail = 310
    InstanceDeleteFail = 311
    InstanceToSystemFail = 312
    InstanceEnableFail = 313
    InstanceDisableFail = 314
    RescheduleFail = 315
    InstanceFail = 318
    # Custom (syslog severities 0-7)
    CustomEmergency = 900
    CustomAlert = 901
    CustomCritical = 902
    CustomError = 903
    CustomWarning = 904
    CustomNotice = 905
    CustomInformation = 906
    CustomDebug = 907

    @property
    def is_failure(self) -> bool:
        return self is EventType.CronFail or self.name.endswith("Fail")


STANDALONE_EVENTS: frozenset[EventType] = frozenset(
    {
        EventType.CronDisabled,
        EventType.CronEmpty,
        EventType.CronNoThreads,
        EventType.CronFail,
        EventType.SSEStart,
        EventType.SSEEnd,
        EventType.TaskAdd,
        EventType.TaskDelete,
        EventType.TaskEnable,
        EventType.TaskDisable,
        EventType.TaskToSystem,
        EventType.TaskAddFail,
        EventType.TaskDeleteFail,
        EventType.TaskEnableFail,
        EventType.TaskDisableFail,
        EventType.TaskToSystemFail,
        EventType.CustomEmergency,
        EventType.CustomAlert,
        EventType.CustomCritical,
        EventType.CustomError,
        EventType.CustomWarning,
        EventType.CustomNotice,
        EventType.CustomInformation,
        EventType.CustomDebug,
    }
)

COALESCED_EVENTS: frozenset[EventType] = frozenset(
    {EventType.CronDisabled, EventType.CronEmpty, EventType.CronNoThreads}
)

_CUSTOM_LEVELS = {
    EventType.CustomEmergency: "critical",
    EventType.CustomAlert: "critical",
    EventType.CustomCritical: "critical",
    EventType.CustomError: "error",
    EventType.CustomWarning: "warning",
    EventType.CustomNotice: "info",
    EventType.CustomInformation: "info",
    EventType.CustomDebug: "debug",
}


def log_level(event: EventType) -> str:
    """structlog method name for an event type."""
    if event in _CUSTOM_LEVELS:
        return _CUSTOM_LEVELS[event]
    if event is EventType.CronFail:
        return "error"
    if event.is_failure:
        return "warning"
    return "info"


def describe_error(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class EventLog(BaseRepository):
    """Notification sink shared by the agent, state machine and repositories.

    Example:
        >>> events = EventLog(conn, dialect)
        >>> events.log("Added task backup", EventType.TaskAdd)
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        prefix: str = DEFAULT_PREFIX,
        *,
        stream: EventStream | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(conn, dialect, prefix)
        self.stream = stream
        self.clock = clock
        self.run_by: str | None = None
        self.retry_ms: int = 10000
        self._current: InstanceKey | None = None

    # -- Context -----------------------------------------------------------

    @property
    def streaming(self) -> bool:
        return self.stream is not None and self.stream.connected

    def configure(self, *, run_by: str | None = None, retry_ms: int | None = None) -> None:
        """Set the claim token and stream retry hint used for later events."""
        if run_by is not None:
            self.run_by = run_by
        if retry_ms is not None:
            self.retry_ms = retry_ms

    @contextmanager
    def current_instance(self, key: InstanceKey, run_by: str | None = None) -> Iterator[None]:
        """Attach ``key`` to instance events logged inside the block."""
        previous, previous_run_by = self._current, self.run_by
        self._current = key
        if run_by is not None:
            self.run_by = run_by
        try:
            yield
        finally:
            self._current, self.run_by = previous, previous_run_by

    # -- Sink --------------------------------------------------------------

    def log(
        self,
        message: str,
        event: EventType,
        *,
        end_stream: bool = False,
        error: BaseException | None = None,
        instance: InstanceKey | None = None,
    ) -> None:
        """Record an event. Never raises."""
        if event in STANDALONE_EVENTS:
            instance = None
        elif instance is None:
            instance = self._current

        run_by = None if event in COALESCED_EVENTS else self.run_by
        text = message if error is None else f"{message}\n{describe_error(error)}"

        fields: dict[str, Any] = {"event_type": event.name, "code": int(event)}
        if instance is not None:
            fields.update(task=instance.task, arguments=instance.arguments, instance=instance.instance)
        if run_by is not None:
            fields["run_by"] = run_by
        if error is not None:
            fields["error"] = describe_error(error)
        getattr(logger, log_level(event))(message, **fields)

        self._store(text, event, run_by, instance)

        if self.stream is not None and self.stream.connected:
            retry = 0 if (end_stream or error is not None) else self.retry_ms
            self.stream.send(message, event.name, retry)
        if end_stream and self.stream is not None:
            self.stream.close()

    def _store(
        self,
        text: str,
        event: EventType,
        run_by: str | None,
        instance: InstanceKey | None,
    ) -> None:
        now = self.clock()
        table = self.table("log")
        p = self.dialect.placeholder(0)
        try:
            if event in COALESCED_EVENTS:
                last = self.query_one(
                    f"SELECT id, type FROM {table} ORDER BY time DESC, id DESC LIMIT 1"
                )
                if last is not None and int(last["type"]) == int(event):
                    self.execute(
                        f"UPDATE {table} SET message = {p} WHERE id = {p}",
                        (f"{text} (last check at {now.isoformat()})", last["id"]),
                    )
                    self.commit()
                    return
            self.execute(
                f"INSERT INTO {table} (time, type, run_by, streaming, task, arguments, instance, message) "
                f"VALUES ({self.ph(8)})",
                (
                    to_db(now),
                    int(event),
                    run_by,
                    1 if self.streaming else 0,
                    instance.task if instance else None,
                    instance.arguments if instance else None,
                    instance.instance if instance else None,
                    text,
                ),
            )
            self.commit()
        except DB_ERRORS as e:
            self._safe_rollback()
            logger.warning("event_log_write_failed", event_type=event.name, error=str(e))

    # -- Maintenance -------------------------------------------------------

    def purge(self, log_life_days: int) -> int:
        """Delete rows older than ``log_life_days``. Returns rows removed."""
        cutoff = self.clock() - timedelta(days=max(log_life_days, 1))
        with self.transaction("purge log"):
            cur = self.execute(
                f"DELETE FROM {self.table('log')} WHERE time < {self.dialect.placeholder(0)}",
                (to_db(cutoff),),
            )
            removed = max(cur.rowcount or 0, 0)
        if removed:
            logger.info("log_purged", removed=removed, days=log_life_days)
        return removed

    def recent(self, limit: int = 50, task: str | None = None) -> list[dict[str, Any]]:
        """Newest log rows first, optionally for one task."""
        table = self.table("log")
        p = self.dialect.placeholder(0)
        where = f"WHERE task = {p} " if task else ""
        params: tuple = (task, int(limit)) if task else (int(limit),)
        with self.guard("read log"):
            rows = self.query(
                f"SELECT time, type, run_by, task, arguments, instance, message FROM {table} "
                f"{where}ORDER BY time DESC, id DESC LIMIT {p}",
                params,
            )
        for row in rows:
            row["time"] = from_db(row["time"])
            try:
                row["type"] = EventType(int(row["type"]))
            except ValueError:
                pass
        return rows


__all__ = [
    "COALESCED_EVENTS",
    "STANDALONE_EVENTS",
    "EventLog",
    "EventType",
    "describe_error",
    "log_level",
]
