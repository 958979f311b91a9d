"""Task instance state machine.

::

    IDLE(0) ──claim──▶ CLAIMED(1) ──start──▶ RUNNING(2) ──┬─ one-time success ─▶ deleted
      ▲                    │                              │
      │                    └── calendar gate failed ──────┤
      └──────────────────── reschedule ◀──────────────────┘

    PENDING_REMOVAL(3): removal marker, swept by hang recovery.

``run`` drives one claimed instance through the diagram; ``reschedule``
is the shared exit used by both ``run`` and hang recovery. Every write is
conditional on the claim token the caller holds, so an agent that lost its
claim (to hang recovery or an operator) cannot overwrite the row.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from cronspine.core.dialect import Dialect
from cronspine.core.errors import DatastoreError, ScheduleError
from cronspine.core.logging import LogContext, get_logger
from cronspine.core.protocols import Connection
from cronspine.core.repository import BaseRepository
from cronspine.core.schema import DEFAULT_PREFIX
from cronspine.core.timestamps import to_db, utc_now
from cronspine.execution.executor import Executor
from cronspine.scheduling.calendar import next_qualifying
from cronspine.scheduling.config import SchedulerConfig
from cronspine.scheduling.events import EventLog, EventType
from cronspine.scheduling.models import ClaimToken, InstanceKey, InstanceStatus, TaskDefinition, TaskInstance
from cronspine.scheduling.nextrun import compute_next_run
from cronspine.scheduling.repository import InstanceRepository, TaskRepository

logger = get_logger(__name__)

GATE_MESSAGE = "Attempted to run function during forbidden day of week or day of month."


class RunOutcome(str, Enum):
    """How a ``run`` call ended."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    GATED = "gated"
    LOST_CLAIM = "lost_claim"
    MISSING = "missing"


@dataclass(frozen=True)
class RescheduleResult:
    applied: bool
    next_run: datetime | None = None
    deleted: bool = False


@dataclass(frozen=True)
class InstanceResult:
    """Result of running one claimed instance."""

    key: InstanceKey
    outcome: RunOutcome
    error: str | None = None
    next_run: datetime | None = None
    deleted: bool = False

    @property
    def success(self) -> bool:
        # Missing rows were finished elsewhere; a lost claim is someone else's run
        return self.outcome in (RunOutcome.SUCCEEDED, RunOutcome.LOST_CLAIM, RunOutcome.MISSING)


def calendar_allows(instance: TaskInstance) -> bool:
    """True when the stored due time is on an allowed day."""
    if not instance.day_of_week and not instance.day_of_month:
        return True
    due = instance.next_run
    if due is None:
        return True
    try:
        return next_qualifying(due, instance.day_of_week, instance.day_of_month) == due
    except ScheduleError:
        return False


class InstanceStateMachine(BaseRepository):
    """Runs and reschedules task instances."""

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        prefix: str = DEFAULT_PREFIX,
        *,
        executor: Executor | None = None,
        events: EventLog | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(conn, dialect, prefix)
        self.clock = clock
        self.executor = executor or Executor()
        self.events = events or EventLog(conn, self.dialect, prefix, clock=clock)
        self.instances = InstanceRepository(conn, self.dialect, prefix, events=self.events, clock=clock)
        self.tasks = TaskRepository(conn, self.dialect, prefix, events=self.events, clock=clock)

    def _key_clause(self) -> str:
        p = self.dialect.placeholder(0)
        return f"task = {p} AND arguments = {p} AND instance = {p}"

    def load(self, key: InstanceKey) -> tuple[TaskInstance, TaskDefinition] | None:
        instance = self.instances.get(key)
        if instance is None:
            return None
        definition = self.tasks.get(instance.task)
        if definition is None:
            return None
        return instance, definition

    # -- Transitions -------------------------------------------------------

    def start(self, key: InstanceKey, token: ClaimToken) -> bool:
        """CLAIMED -> RUNNING for the holder of ``token``; stamps ``last_run``."""
        p = self.dialect.placeholder(0)
        now = to_db(self.clock())
        with self.transaction(f"start instance {key}"):
            cur = self.execute(
                f"UPDATE {self.table('schedule')} "
                f"SET status = {int(InstanceStatus.RUNNING)}, last_run = {p}, updated = {p} "
                f"WHERE {self._key_clause()} AND run_by = {p} "
                f"AND status = {int(InstanceStatus.CLAIMED)}",
                (now, now, key.task, key.arguments, key.instance, token),
            )
        return cur.rowcount == 1

    def run(self, key: InstanceKey, token: ClaimToken, config: SchedulerConfig) -> InstanceResult:
        """Run one instance claimed by ``token``.

        Handler failures are recorded and rescheduled, never raised.

        Raises:
            DatastoreError: Loading or starting the instance failed.
        """
        with self.events.current_instance(key, run_by=token), LogContext(task=key.task, run_by=token):
            loaded = self.load(key)
            if loaded is None:
                # One-time job already finished and removed elsewhere
                logger.info("instance_missing", arguments=key.arguments, instance=key.instance)
                return InstanceResult(key, RunOutcome.MISSING)
            instance, definition = loaded

            if not calendar_allows(instance):
                self.events.log(GATE_MESSAGE, EventType.InstanceFail, instance=key)
                rescheduled = self.reschedule(instance, definition, False, config)
                return InstanceResult(key, RunOutcome.GATED, GATE_MESSAGE, rescheduled.next_run)

            if not self.start(key, token):
                logger.info("claim_lost", arguments=key.arguments, instance=key.instance)
                return InstanceResult(key, RunOutcome.LOST_CLAIM)

            instance = instance.model_copy(
                update={"status": InstanceStatus.RUNNING, "run_by": token, "last_run": self.clock()}
            )
            outcome = self.executor.execute(definition, instance)
            if not outcome.success:
                self.events.log(outcome.error or "Task failed.", EventType.InstanceFail, instance=key)

            rescheduled = self.reschedule(instance, definition, outcome.success, config)
            return InstanceResult(
                key,
                RunOutcome.SUCCEEDED if outcome.success else RunOutcome.FAILED,
                outcome.error,
                rescheduled.next_run,
                rescheduled.deleted,
            )

    def reschedule(
        self,
        instance: TaskInstance,
        definition: TaskDefinition,
        success: bool,
        config: SchedulerConfig,
        at: datetime | None = None,
    ) -> RescheduleResult:
        """Return ``instance`` to IDLE with a new due time, or delete it.

        Successful one-time instances are deleted. Everything else is
        rescheduled to ``at`` or the computed next run, its claim cleared
        and ``last_success``/``last_error`` stamped. Only a row still held
        by ``instance.run_by`` is touched. Failures are logged as
        ``RescheduleFail`` / ``InstanceDeleteFail`` and reported through
        ``applied=False``.
        """
        key = instance.key
        if instance.one_time and success:
            try:
                removed = self.instances.remove(key, frequency=0, owner=instance.run_by)
            except DatastoreError:
                return RescheduleResult(False)
            return RescheduleResult(removed, None, removed)

        now = self.clock()
        try:
            when = at or compute_next_run(
                instance.next_run,
                now,
                instance.frequency,
                success=success,
                task_retry=definition.retry,
                one_time_retry=config.one_time_retry,
                weekdays=instance.day_of_week,
                monthdays=instance.day_of_month,
            )
        except ScheduleError as e:
            self.events.log("Failed to compute next run of task instance.", EventType.RescheduleFail, error=e, instance=key)
            return RescheduleResult(False)

        p = self.dialect.placeholder(0)
        stamp_column = "last_success" if success else "last_error"
        if instance.run_by is None:
            owner_clause, owner_params = " AND run_by IS NULL", ()
        else:
            owner_clause, owner_params = f" AND run_by = {p}", (instance.run_by,)
        try:
            with self.transaction(f"reschedule instance {key}"):
                cur = self.execute(
                    f"UPDATE {self.table('schedule')} "
                    f"SET status = {int(InstanceStatus.IDLE)}, run_by = NULL, next_run = {p}, "
                    f"{stamp_column} = {p}, updated = {p} "
                    f"WHERE {self._key_clause()} "
                    f"AND status != {int(InstanceStatus.PENDING_REMOVAL)}{owner_clause}",
                    (to_db(when), to_db(now), to_db(now), key.task, key.arguments, key.instance, *owner_params),
                )
        except DatastoreError as e:
            self.events.log(
                f"Failed to reschedule task instance for {when.isoformat()}.",
                EventType.RescheduleFail,
                error=e.cause or e,
                instance=key,
            )
            return RescheduleResult(False, when)

        if cur.rowcount > 0:
            self.events.log(f"Task instance rescheduled for {when.isoformat()}.", EventType.Reschedule, instance=key)
            return RescheduleResult(True, when)
        return RescheduleResult(False, when)


__all__ = [
    "GATE_MESSAGE",
    "InstanceResult",
    "InstanceStateMachine",
    "RescheduleResult",
    "RunOutcome",
    "calendar_allows",
]
