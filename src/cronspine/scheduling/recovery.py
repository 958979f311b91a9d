"""Hang recovery.

Two sweeps, run at the start of every cycle and between batches of a
looping streaming agent:

1. Delete every row left in ``PENDING_REMOVAL`` by an interrupted delete.
2. Treat every claimed row whose ``coalesce(last_run, next_run) +
   max_time`` has passed as a failed run: reschedule it and clear the
   claim. One-time rows are rescheduled for *now* instead of now + retry;
   they were hung, not rejected.

Hangs are not errors; they are logged and repaired.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from cronspine.core.logging import get_logger
from cronspine.core.timestamps import from_db
from cronspine.scheduling.config import SchedulerConfig
from cronspine.scheduling.models import InstanceStatus, TaskDefinition, TaskInstance
from cronspine.scheduling.repository import INSTANCE_COLUMNS
from cronspine.scheduling.state import InstanceStateMachine

logger = get_logger(__name__)


@dataclass(frozen=True)
class RecoveryReport:
    purged: int = 0
    recovered: int = 0


def is_hung(started: datetime | None, max_time: int, now: datetime) -> bool:
    """True once a claim started at ``started`` has outlived ``max_time``."""
    if started is None:
        return False
    return started + timedelta(seconds=max_time) < now


class HangRecovery:
    """Sweeps removal markers and abandoned claims."""

    def __init__(self, machine: InstanceStateMachine):
        self.machine = machine

    def purge_pending_removal(self) -> int:
        m = self.machine
        with m.transaction("purge pending removals"):
            cur = m.execute(
                f"DELETE FROM {m.table('schedule')} "
                f"WHERE status = {int(InstanceStatus.PENDING_REMOVAL)}"
            )
            return max(cur.rowcount or 0, 0)

    def find_hung(self, now: datetime) -> list[tuple[TaskInstance, TaskDefinition]]:
        """Claimed rows whose execution budget has run out."""
        m = self.machine
        columns = ", ".join(f"s.{c}" for c in INSTANCE_COLUMNS)
        with m.guard("find hung instances"):
            rows = m.query(
                f"SELECT {columns}, t.max_time AS task_max_time "
                f"FROM {m.table('schedule')} s JOIN {m.table('tasks')} t ON t.name = s.task "
                f"WHERE s.run_by IS NOT NULL"
            )

        hung = []
        definitions: dict[str, TaskDefinition] = {}
        for row in rows:
            max_time = int(row.pop("task_max_time"))
            started = from_db(row["last_run"]) or from_db(row["next_run"])
            if not is_hung(started, max_time, now):
                continue
            instance = TaskInstance.model_validate(row)
            if instance.task not in definitions:
                definition = m.tasks.get(instance.task)
                if definition is None:
                    continue
                definitions[instance.task] = definition
            hung.append((instance, definitions[instance.task]))
        return hung

    def run(self, config: SchedulerConfig) -> RecoveryReport:
        """Run both sweeps.

        Raises:
            DatastoreError: A sweep query failed.
        """
        purged = self.purge_pending_removal()
        now = self.machine.clock()
        recovered = 0
        for instance, definition in self.find_hung(now):
            at = now if instance.one_time else None
            with self.machine.events.current_instance(instance.key, run_by=instance.run_by):
                result = self.machine.reschedule(instance, definition, False, config, at=at)
            if result.applied:
                recovered += 1
                logger.warning(
                    "instance_unhung",
                    task=instance.task,
                    arguments=instance.arguments,
                    instance=instance.instance,
                    run_by=instance.run_by,
                    next_run=result.next_run.isoformat() if result.next_run else None,
                )
        if purged or recovered:
            logger.info("recovery_done", purged=purged, recovered=recovered)
        return RecoveryReport(purged, recovered)


__all__ = ["HangRecovery", "RecoveryReport", "is_hung"]
