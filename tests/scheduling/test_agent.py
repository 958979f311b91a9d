"""Tests for the agent run loop."""

from datetime import timedelta

import pytest

from cronspine.core.errors import SchedulerFatalError
from cronspine.core.schema import DEFAULT_PREFIX
from cronspine.core.timestamps import to_db
from cronspine.execution.executor import Executor
from cronspine.scheduling.agent import Agent, CycleStatus, new_token
from cronspine.scheduling.events import EventType
from cronspine.scheduling.selector import ClaimSelector
from cronspine.scheduling.stream import MemoryStream
from tests._support.helpers import T0, add_instance, add_task, fetch_log, fetch_row, log_types


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_agent(db, dialect, registry, clock, sleeps):
    def build(stream=None, token="tok"):
        return Agent(
            db,
            dialect,
            DEFAULT_PREFIX,
            registry=registry,
            stream=stream,
            clock=clock,
            sleep=sleeps.append,
            token_factory=lambda: token,
        )

    return build


class TestToken:
    def test_fits_run_by_column(self):
        token = new_token()
        assert len(token) == 30
        int(token, 16)

    def test_unique(self):
        assert new_token() != new_token()


class TestCycle:
    def test_runs_due_instance(self, make_agent, tasks, instances, db):
        add_task(tasks)
        add_instance(instances, frequency=3600)

        result = make_agent().process(5)

        assert result.status is CycleStatus.COMPLETED
        assert result.run_by == "tok"
        assert (result.batches, result.succeeded, result.failed) == (1, 1, 0)
        assert log_types(db)[-3:] == [EventType.InstanceStart, EventType.Reschedule, EventType.InstanceEnd]
        log = fetch_log(db)
        assert log[-3]["message"] == "1/1 job starting"
        assert log[-1]["message"] == "1/1 job finished"
        assert log[-1]["run_by"] == "tok"
        assert fetch_row(db, "job")["run_by"] is None

    def test_progress_counts_batch(self, make_agent, tasks, instances, db):
        add_task(tasks)
        add_instance(instances, frequency=3600, arguments=[1])
        add_instance(instances, frequency=3600, arguments=[2])
        result = make_agent().process(5)
        assert result.succeeded == 2
        starts = [row["message"] for row in fetch_log(db) if row["type"] == EventType.InstanceStart]
        assert [m.split()[0] for m in starts] == ["1/2", "2/2"]

    def test_custom_message_used_for_start(self, make_agent, tasks, instances, db):
        add_task(tasks)
        add_instance(instances, frequency=3600, message="Nightly backup")
        make_agent().process()
        starts = [row["message"] for row in fetch_log(db) if row["type"] == EventType.InstanceStart]
        assert starts == ["1/1 Nightly backup"]

    def test_failure_counted(self, make_agent, tasks, instances, db):
        add_task(tasks, handler="nope")
        add_instance(instances, frequency=3600)
        result = make_agent().process()
        assert (result.succeeded, result.failed) == (0, 1)
        assert result.ok
        last = fetch_log(db)[-1]
        assert last["type"] == EventType.InstanceFail
        assert last["message"] == "1/1 job failed"

    def test_items_floor_is_one(self, make_agent, tasks, instances):
        add_task(tasks)
        add_instance(instances, frequency=3600)
        assert make_agent().process(0).succeeded == 1

    def test_empty(self, make_agent, db, sleeps):
        result = make_agent().process()
        assert result.status is CycleStatus.COMPLETED
        assert result.processed == 0
        assert log_types(db) == [EventType.CronEmpty]
        assert sleeps == []

    def test_empty_checks_coalesce(self, make_agent, db, clock):
        make_agent().process()
        clock.advance(60)
        make_agent().process()
        log = fetch_log(db)
        assert len(log) == 1
        assert "(last check at 2025-01-01T12:01:00+00:00)" in log[0]["message"]
        assert log[0]["run_by"] is None

    def test_to_dict(self, make_agent):
        data = make_agent().process().to_dict()
        assert data["status"] == "completed"
        assert data["processed"] == 0
        assert data["error"] is None


class _ExplodingExecutor(Executor):
    """Raises outside the handler for the task named ``broken``."""

    def execute(self, definition, instance):
        if definition.name == "broken":
            raise RuntimeError("executor blew up")
        return super().execute(definition, instance)


class Ambiguous:
    """Return value that refuses equality checks, like an array."""

    def __eq__(self, other):
        raise ValueError("The truth value of an array is ambiguous")

    __hash__ = None


class TestBatchIsolation:
    def test_raising_instance_does_not_stop_batch(self, db, dialect, registry, clock, tasks, instances):
        add_task(tasks, name="broken")
        add_task(tasks, name="good")
        add_instance(instances, task="broken", frequency=3600, priority=5)
        add_instance(instances, task="good", frequency=3600)
        agent = Agent(
            db,
            dialect,
            executor=_ExplodingExecutor(registry),
            clock=clock,
            sleep=lambda seconds: None,
            token_factory=lambda: "tok",
        )

        result = agent.process(5)

        assert result.status is CycleStatus.COMPLETED
        assert (result.succeeded, result.failed) == (1, 1)
        good = fetch_row(db, "good")
        assert good["run_by"] is None
        assert good["next_run"] == to_db(T0 + timedelta(hours=1))
        # left claimed for hang recovery
        assert fetch_row(db, "broken")["run_by"] == "tok"
        failures = [r["message"] for r in fetch_log(db) if r["type"] == EventType.InstanceFail]
        assert failures == ["Failed to run task `broken` (1/2)\nRuntimeError: executor blew up"]

    def test_unusual_return_value_is_a_failure(self, make_agent, registry, tasks, instances, db):
        registry.register("ambiguous", lambda: Ambiguous())
        add_task(tasks, name="odd", handler="ambiguous", allowed_returns=["done"])
        add_task(tasks, name="good")
        add_instance(instances, task="odd", frequency=3600, priority=5)
        add_instance(instances, task="good", frequency=3600)

        result = make_agent().process(5)

        assert (result.succeeded, result.failed) == (1, 1)
        assert fetch_row(db, "good")["run_by"] is None
        assert fetch_row(db, "odd")["run_by"] is None


class TestGates:
    def test_disabled(self, make_agent, settings_repo, tasks, instances, db):
        add_task(tasks)
        add_instance(instances, frequency=3600)
        settings_repo.set("enabled", 0)

        result = make_agent().process()

        assert result.status is CycleStatus.DISABLED
        assert result.processed == 0
        assert log_types(db)[-1] == EventType.CronDisabled
        assert fetch_row(db, "job")["run_by"] is None

    def test_no_capacity(self, make_agent, settings_repo, tasks, instances, db, dialect, clock):
        add_task(tasks)
        add_instance(instances, frequency=3600, arguments=["busy"])
        add_instance(instances, frequency=3600, arguments=["waiting"])
        settings_repo.set("max_threads", 1)
        ClaimSelector(db, dialect, clock=clock).claim(1, "other-agent")

        result = make_agent().process()

        assert result.status is CycleStatus.NO_CAPACITY
        assert result.ok
        assert log_types(db)[-1] == EventType.CronNoThreads

    def test_capacity_counts_tokens_not_rows(self, make_agent, settings_repo, tasks, instances, db, dialect, clock):
        add_task(tasks)
        for n in range(3):
            add_instance(instances, frequency=3600, arguments=[n])
        settings_repo.set("max_threads", 2)
        ClaimSelector(db, dialect, clock=clock).claim(2, "other-agent")
        result = make_agent().process()
        assert result.status is CycleStatus.COMPLETED
        assert result.succeeded == 1


class TestRecoveryAtStart:
    def test_hung_claim_released_first(self, make_agent, tasks, instances, db, dialect, clock):
        add_task(tasks, max_time=60)
        add_instance(instances, frequency=3600)
        ClaimSelector(db, dialect, clock=clock).claim(1, "dead-agent")
        clock.advance(61)

        result = make_agent().process()

        # released and rescheduled an hour out, so nothing is due yet
        assert result.processed == 0
        row = fetch_row(db, "job")
        assert row["run_by"] is None
        reschedules = [r for r in fetch_log(db) if r["type"] == EventType.Reschedule]
        assert reschedules[-1]["run_by"] == "dead-agent"

    def test_old_log_rows_purged(self, make_agent, settings_repo, db, clock):
        settings_repo.set("log_life", 1)
        make_agent().process()
        clock.advance(2 * 86400)
        make_agent().process()
        log = fetch_log(db)
        assert len(log) == 1
        assert "last check" not in log[0]["message"]


class TestStreaming:
    def test_frames_bracket_cycle(self, make_agent, tasks, instances):
        add_task(tasks)
        add_instance(instances, frequency=3600)
        stream = MemoryStream()

        make_agent(stream=stream).process()

        assert stream.events[0] == "SSEStart"
        assert stream.events[-1] == "SSEEnd"
        assert "InstanceStart" in stream.events
        assert "InstanceEnd" in stream.events
        assert not stream.connected

    def test_end_frame_has_zero_retry(self, make_agent):
        stream = MemoryStream()
        make_agent(stream=stream).process()
        message, event, retry = stream.frames[-1]
        assert (message, event, retry) == ("Cron processing finished", "SSEEnd", 0)
        assert stream.frames[0][2] == 10000

    def test_idle_sleep_when_empty(self, make_agent, sleeps):
        make_agent(stream=MemoryStream()).process()
        assert sleeps == [500.0]

    def test_loop_until_disconnect(self, make_agent, settings_repo, sleeps):
        settings_repo.set("sse_loop", 1)
        stream = MemoryStream(disconnect_after=4)

        result = make_agent(stream=stream).process()

        assert stream.events == ["SSEStart", "CronEmpty", "CronEmpty", "CronEmpty"]
        assert result.batches == 3
        assert len(sleeps) == 3

    def test_disabled_ends_stream(self, make_agent, settings_repo):
        settings_repo.set("enabled", 0)
        stream = MemoryStream()
        make_agent(stream=stream).process()
        assert stream.events == ["SSEStart", "CronDisabled"]
        assert not stream.connected


class TestFatal:
    def test_missing_table(self, make_agent, db):
        db.execute(f"DROP TABLE {DEFAULT_PREFIX}schedule")
        db.commit()

        result = make_agent().process()

        assert result.status is CycleStatus.FATAL
        assert not result.ok
        assert result.message == "Cron database not available"
        assert log_types(db)[-1] == EventType.CronFail
        with pytest.raises(SchedulerFatalError):
            result.raise_for_status()

    def test_completed_does_not_raise(self, make_agent):
        make_agent().process().raise_for_status()
