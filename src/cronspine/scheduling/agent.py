"""Agent run loop - one scheduler process's cycle.

An agent claims due work under a fresh claim token, runs it and returns.
Many agents may share one datastore; they coordinate only through claims.

Usage (programmatic)::

    from cronspine.core.connection import create_connection
    from cronspine.scheduling.agent import Agent

    conn, info = create_connection("cron.db", init_schema=True)
    result = Agent(conn, info.dialect).process(items=5)
    result.raise_for_status()

Usage (CLI)::

    cronspine run --items 5 --handlers myapp.cron_tasks

Cycle::

    token ─▶ settings ─▶ hang recovery ─▶ purge log ─▶ enabled?
                                                         │ no ─▶ DISABLED
                                                         ▼
            ┌──▶ settings ─▶ capacity? ── no ─▶ NO_CAPACITY (one-shot)
            │                  │                 sleep + retry (streaming)
            │                  ▼
            │               claim N ─▶ run each in score order
            │                  │
            └── streaming and sse_loop and connected ◀┘

Fatal conditions (datastore unavailable) end the cycle with a
``FATAL`` ``CycleResult``; ``raise_for_status()`` is the only place an
exception leaves the run loop.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from cronspine.core.dialect import Dialect
from cronspine.core.errors import DatastoreError, SchedulerFatalError
from cronspine.core.logging import get_logger
from cronspine.core.protocols import Connection
from cronspine.core.schema import DEFAULT_PREFIX
from cronspine.core.timestamps import utc_now
from cronspine.execution.executor import Executor
from cronspine.execution.registry import HandlerRegistry
from cronspine.scheduling.config import SchedulerConfig, SettingsRepository
from cronspine.scheduling.events import EventLog, EventType
from cronspine.scheduling.models import ClaimedInstance, ClaimToken
from cronspine.scheduling.recovery import HangRecovery
from cronspine.scheduling.selector import ClaimSelector
from cronspine.scheduling.state import InstanceStateMachine
from cronspine.scheduling.stream import EventStream

logger = get_logger(__name__)


def new_token() -> ClaimToken:
    """30 hex characters, fits ``run_by VARCHAR(30)``."""
    return ClaimToken(secrets.token_hex(15))


class CycleStatus(str, Enum):
    COMPLETED = "completed"
    DISABLED = "disabled"
    NO_CAPACITY = "no_capacity"
    FATAL = "fatal"


@dataclass
class CycleResult:
    """What one ``Agent.process`` call did."""

    status: CycleStatus
    run_by: str | None = None
    batches: int = 0
    succeeded: int = 0
    failed: int = 0
    message: str | None = None
    error: BaseException | None = None

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed

    @property
    def ok(self) -> bool:
        return self.status is not CycleStatus.FATAL

    def raise_for_status(self) -> None:
        """Raise ``SchedulerFatalError`` if the cycle ended fatally."""
        if self.status is CycleStatus.FATAL:
            raise SchedulerFatalError(self.message or "Scheduler cycle failed", cause=self.error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "run_by": self.run_by,
            "batches": self.batches,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "message": self.message,
            "error": str(self.error) if self.error else None,
        }


class Agent:
    """One scheduler agent.

    Args:
        conn: Datastore connection.
        dialect: SQL dialect of ``conn``.
        prefix: Table prefix.
        registry: Handler registry (defaults to the process-wide one).
        executor: Prebuilt executor; overrides ``registry``.
        stream: Streaming transport. When given the agent runs in
            streaming mode: idle cycles sleep, and with ``sse_loop`` on it
            keeps looping until the stream disconnects.
        clock: Source of "now".
        sleep: Blocking sleep used for back-off.
        token_factory: Claim token generator.
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        prefix: str = DEFAULT_PREFIX,
        *,
        registry: HandlerRegistry | None = None,
        executor: Executor | None = None,
        stream: EventStream | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        token_factory: Callable[[], ClaimToken] = new_token,
    ) -> None:
        self.stream = stream
        self.sleep = sleep
        self.token_factory = token_factory
        self.events = EventLog(conn, dialect, prefix, stream=stream, clock=clock)
        dialect = self.events.dialect
        self.settings = SettingsRepository(conn, dialect, prefix)
        self.selector = ClaimSelector(conn, dialect, prefix, clock=clock)
        self.machine = InstanceStateMachine(
            conn,
            dialect,
            prefix,
            executor=executor or Executor(registry),
            events=self.events,
            clock=clock,
        )
        self.recovery = HangRecovery(self.machine)
        self.config = SchedulerConfig()

    @property
    def streaming(self) -> bool:
        return self.stream is not None and self.stream.connected

    def _keep_looping(self) -> bool:
        return self.config.enabled and self.config.sse_loop and self.streaming

    def _refresh(self) -> None:
        self.config = self.settings.refresh(self.config)
        self.events.configure(retry_ms=self.config.sse_retry)

    def _fatal(self, result: CycleResult, message: str, error: BaseException | None = None) -> CycleResult:
        self.events.log(message, EventType.CronFail, end_stream=True, error=error)
        result.status = CycleStatus.FATAL
        result.message = message
        result.error = error
        return result

    def _finish(self, result: CycleResult) -> CycleResult:
        if self.stream is not None:
            self.events.log("Cron processing finished", EventType.SSEEnd, end_stream=True)
        logger.info("cycle_done", **result.to_dict())
        return result

    def process(self, items: int = 1) -> CycleResult:
        """Run one cycle (or, streaming with ``sse_loop``, a loop of them)."""
        token = self.token_factory()
        self.events.configure(run_by=token)
        result = CycleResult(CycleStatus.COMPLETED, run_by=token)
        if self.stream is not None:
            self.events.log("Cron processing started", EventType.SSEStart)

        try:
            self._refresh()
            self.recovery.run(self.config)
            self.events.purge(self.config.log_life)
        except DatastoreError as e:
            return self._fatal(result, "Cron database not available", e)

        if not self.config.enabled:
            self.events.log("Cron processing is disabled", EventType.CronDisabled, end_stream=True)
            result.status = CycleStatus.DISABLED
            return result

        items = max(items, 1)
        while True:
            try:
                self._refresh()
            except DatastoreError as e:
                return self._fatal(result, "Failed to get CRON settings", e)
            if not self.config.enabled:
                break

            try:
                active = self.selector.active_claims()
            except DatastoreError as e:
                return self._fatal(result, "Failed to check for available threads", e)
            if active >= self.config.max_threads:
                self.events.log("Cron threads are exhausted", EventType.CronNoThreads)
                if self.stream is None:
                    result.status = CycleStatus.NO_CAPACITY
                    return result
                self.sleep(self.config.idle_sleep_seconds)
                if not self._keep_looping():
                    break
                continue

            try:
                claimed = self.selector.claim(items, token, streaming=self.streaming)
            except DatastoreError as e:
                return self._fatal(result, "Failed to queue job", e)
            result.batches += 1

            if not claimed:
                self.events.log("Cron list is empty", EventType.CronEmpty)
                if self.stream is not None:
                    self.sleep(self.config.idle_sleep_seconds)
            else:
                for number, claim in enumerate(claimed, start=1):
                    self._run_one(claim, number, len(claimed), token, result)

            if self.stream is not None and self.config.sse_loop:
                try:
                    self.recovery.run(self.config)
                except DatastoreError as e:
                    return self._fatal(result, "Failed to recover hung task instances", e)

            if not self._keep_looping():
                break

        return self._finish(result)

    def _run_one(
        self,
        claim: ClaimedInstance,
        number: int,
        total: int,
        token: ClaimToken,
        result: CycleResult,
    ) -> None:
        key = claim.key
        progress = f"{number}/{total}"
        with self.events.current_instance(key, run_by=token):
            self.events.log(
                f"{progress} {claim.message or key.task + ' starting'}", EventType.InstanceStart
            )
            try:
                outcome = self.machine.run(key, token, self.config)
            except Exception as e:
                # Isolated to this instance; its claim is left for hang recovery
                self.events.log(f"Failed to run task `{key.task}` ({progress})", EventType.InstanceFail, error=e)
                result.failed += 1
                return
            if outcome.success:
                self.events.log(f"{progress} {key.task} finished", EventType.InstanceEnd)
                result.succeeded += 1
            else:
                self.events.log(f"{progress} {key.task} failed", EventType.InstanceFail)
                result.failed += 1


__all__ = ["Agent", "CycleResult", "CycleStatus", "new_token"]
