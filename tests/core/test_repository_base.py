"""Tests for BaseRepository error translation and timestamps."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from cronspine.core.errors import DatastoreError
from cronspine.core.repository import BaseRepository
from cronspine.core.sqlite_conn import SqliteConnection
from cronspine.core.timestamps import ensure_utc, from_db, to_db


@pytest.fixture
def repo():
    conn = SqliteConnection(":memory:")
    conn.execute("CREATE TABLE t_items (id INTEGER PRIMARY KEY, name TEXT)")
    conn.commit()
    return BaseRepository(conn, prefix="t_")


class TestBaseRepository:
    def test_table_prefix(self, repo):
        assert repo.table("items") == "t_items"

    def test_transaction_commits(self, repo):
        with repo.transaction("insert"):
            repo.execute("INSERT INTO t_items (name) VALUES (?)", ("a",))
        repo.rollback()
        assert repo.query("SELECT name FROM t_items") == [{"name": "a"}]

    def test_transaction_rolls_back_and_translates(self, repo):
        with pytest.raises(DatastoreError, match="insert failed") as info:
            with repo.transaction("insert"):
                repo.execute("INSERT INTO t_items (name) VALUES (?)", ("a",))
                repo.execute("INSERT INTO t_missing VALUES (1)")
        assert info.value.cause is not None
        assert repo.query("SELECT name FROM t_items") == []

    def test_guard_translates_reads(self, repo):
        with pytest.raises(DatastoreError):
            with repo.guard("read"):
                repo.query("SELECT * FROM t_missing")

    def test_query_one(self, repo):
        assert repo.query_one("SELECT name FROM t_items") is None


class TestTimestamps:
    def test_round_trip(self):
        ts = datetime(2025, 1, 2, 3, 4, 5, 123456, tzinfo=UTC)
        assert to_db(ts) == "2025-01-02 03:04:05.123456+00:00"
        assert from_db(to_db(ts)) == ts

    def test_lexical_order_is_chronological(self):
        early = datetime(2025, 1, 2, 9, 0, tzinfo=UTC)
        late = early + timedelta(microseconds=1)
        assert to_db(early) < to_db(late)

    def test_other_zones_are_converted(self):
        plus_two = datetime(2025, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_db(plus_two).startswith("2025-01-01 12:00:00")
        assert ensure_utc(datetime(2025, 1, 1)).tzinfo is UTC

    def test_empty(self):
        assert from_db(None) is None
        assert from_db("") is None
        assert to_db(None) is None
