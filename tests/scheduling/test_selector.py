"""Tests for the claim selector."""

import threading
from datetime import timedelta

import pytest

from cronspine.core.schema import DEFAULT_PREFIX
from cronspine.core.sqlite_conn import SqliteConnection
from cronspine.core.timestamps import to_db
from cronspine.scheduling.models import InstanceKey, InstanceStatus
from cronspine.scheduling.priority import priority_score
from cronspine.scheduling.selector import ClaimSelector, rank_candidates
from tests._support.helpers import T0, add_instance, add_task, fetch_row


@pytest.fixture
def selector(db, dialect, clock):
    return ClaimSelector(db, dialect, DEFAULT_PREFIX, clock=clock)


@pytest.fixture(autouse=True)
def _tasks(tasks):
    add_task(tasks, "a")
    add_task(tasks, "b")
    add_task(tasks, "c")


def _due(instances, task, minutes_ago=0, **fields):
    return add_instance(instances, task, next_run=T0 - timedelta(minutes=minutes_ago), **fields)


class TestRankCandidates:
    def _row(self, task, minutes_ago, priority=0, frequency=60, arguments="", instance=1):
        return {
            "task": task,
            "arguments": arguments,
            "instance": instance,
            "frequency": frequency,
            "priority": priority,
            "next_run": to_db(T0 - timedelta(minutes=minutes_ago)),
            "message": None,
        }

    def test_sorted_by_score(self):
        rows = [self._row("a", 1), self._row("b", 60), self._row("c", 0, priority=1)]
        ranked = rank_candidates(rows, T0, 3)
        assert [c.key.task for c in ranked] == ["c", "b", "a"]
        assert ranked[0].score == pytest.approx(priority_score(60, 0, 1))

    def test_ties_broken_by_due_time(self):
        # Same score inputs except the due time is identical relative to now
        first = self._row("b", 5, arguments="[1]")
        second = self._row("a", 5, arguments="[2]")
        second["next_run"] = first["next_run"]
        ranked = rank_candidates([first, second], T0, 2)
        assert [c.key.task for c in ranked] == ["a", "b"]

    def test_one_per_task_and_arguments(self):
        rows = [self._row("a", 5, instance=1), self._row("a", 3, instance=2), self._row("b", 1)]
        ranked = rank_candidates(rows, T0, 5)
        assert [(c.key.task, c.key.instance) for c in ranked] == [("a", 1), ("b", 1)]

    def test_truncated(self):
        rows = [self._row(t, 1, arguments=f"[{i}]") for i, t in enumerate("abc")]
        assert len(rank_candidates(rows, T0, 2)) == 2


class TestClaim:
    def test_claims_due_instance(self, selector, instances, db, clock):
        _due(instances, "a", minutes_ago=5, frequency=60)
        claimed = selector.claim(5, "tok")
        assert [c.key for c in claimed] == [InstanceKey("a")]
        row = fetch_row(db, "a")
        assert row["status"] == InstanceStatus.CLAIMED
        assert row["run_by"] == "tok"
        assert row["last_run"] == to_db(T0)

    def test_skips_ineligible_rows(self, selector, instances, tasks, db):
        _due(instances, "a", arguments=[1], frequency=60)
        add_instance(instances, "a", arguments=[2], frequency=60, next_run=T0 + timedelta(seconds=1))
        _due(instances, "a", arguments=[3], frequency=60)
        instances.set_enabled(InstanceKey("a", "[3]"), False)
        _due(instances, "b", frequency=60)
        tasks.set_enabled("b", False)
        _due(instances, "c", frequency=60)
        db.execute("UPDATE cron__schedule SET run_by = 'other', status = 1 WHERE task = 'c'")
        db.commit()

        claimed = selector.claim(10, "tok")
        assert [c.key for c in claimed] == [InstanceKey("a", "[1]")]

    def test_priority_order(self, selector, instances):
        _due(instances, "a", minutes_ago=60, frequency=60)
        _due(instances, "b", minutes_ago=0, frequency=60, priority=1)
        _due(instances, "c", minutes_ago=10, frequency=0)
        claimed = selector.claim(3, "tok")
        assert [c.key.task for c in claimed] == ["b", "a", "c"]

    def test_limit_and_window(self, selector, instances):
        for i in range(5):
            _due(instances, "a", minutes_ago=i, arguments=[i], frequency=60)
        first = selector.claim(2, "one")
        assert [c.key.arguments for c in first] == ["[4]", "[3]"]
        second = selector.claim(10, "two")
        assert len(second) == 3

    def test_one_instance_per_arguments_per_batch(self, selector, instances):
        _due(instances, "a", instance=1, frequency=60)
        _due(instances, "a", instance=2, frequency=60)
        assert len(selector.claim(5, "tok")) == 1
        assert len(selector.claim(5, "tok2")) == 1

    def test_nothing_due(self, selector):
        assert selector.claim(5, "tok") == []
        assert selector.claim(0, "tok") == []

    def test_active_claims(self, selector, instances):
        assert selector.active_claims() == 0
        _due(instances, "a", frequency=60)
        _due(instances, "b", frequency=60)
        selector.claim(1, "one")
        selector.claim(1, "two")
        assert selector.active_claims() == 2


@pytest.mark.slow
class TestConcurrentClaims:
    """Two agents with their own connections racing for the same rows."""

    def _race(self, db_path, dialect, clock, limit):
        barrier = threading.Barrier(2)
        results: dict[str, list] = {}
        errors: list[BaseException] = []

        def agent(token):
            conn = SqliteConnection(str(db_path))
            try:
                selector = ClaimSelector(conn, dialect, DEFAULT_PREFIX, clock=clock)
                barrier.wait()
                results[token] = selector.claim(limit, token)
            except BaseException as e:  # surfaced in the main thread
                errors.append(e)
            finally:
                conn.close()

        threads = [threading.Thread(target=agent, args=(t,)) for t in ("one", "two")]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)
        assert not errors
        return results

    def test_single_row_claimed_once(self, db, db_path, dialect, clock, instances):
        _due(instances, "a", frequency=60)
        results = self._race(db_path, dialect, clock, 5)
        assert sorted(len(v) for v in results.values()) == [0, 1]
        winner = next(token for token, claimed in results.items() if claimed)
        assert fetch_row(db, "a")["run_by"] == winner

    def test_batches_are_disjoint(self, db, db_path, dialect, clock, instances):
        for i in range(10):
            _due(instances, "a", minutes_ago=i, arguments=[i], frequency=60)
        results = self._race(db_path, dialect, clock, 6)
        one = {c.key for c in results["one"]}
        two = {c.key for c in results["two"]}
        assert not one & two
        assert len(one) + len(two) == 10
