"""Claim selector: atomically hand due instances to one agent.

Claim flow::

    BEGIN (IMMEDIATE on SQLite)
      SELECT due candidates, 2 x N, ranked by score_sql()
          FOR UPDATE OF s SKIP LOCKED        (PostgreSQL)
      re-rank in Python, one row per (task, arguments), keep N
      UPDATE ... SET status = CLAIMED, run_by = token, last_run = now
          WHERE <key> AND run_by IS NULL AND status = IDLE
    COMMIT

On PostgreSQL concurrent agents skip each other's locked rows instead of
queueing behind them. SQLite has no row locks; ``BEGIN IMMEDIATE`` takes
the database write lock for the whole claim, so a second agent waits (up
to the busy timeout) and then sees the rows already claimed. The
conditional UPDATE makes a claim that lost a race a no-op on both
backends.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from cronspine.core.dialect import Dialect
from cronspine.core.logging import get_logger
from cronspine.core.protocols import Connection
from cronspine.core.repository import BaseRepository
from cronspine.core.schema import DEFAULT_PREFIX
from cronspine.core.timestamps import from_db, to_db, utc_now
from cronspine.scheduling.models import ClaimedInstance, ClaimToken, InstanceKey, InstanceStatus
from cronspine.scheduling.priority import priority_score, score_sql

logger = get_logger(__name__)

CANDIDATE_FACTOR = 2


def rank_candidates(rows: list[dict], now: datetime, limit: int) -> list[ClaimedInstance]:
    """Score candidate rows, keep the best row per (task, arguments), truncate.

    Ordered by score descending, then due time ascending.
    """
    ranked = []
    for row in rows:
        next_run = from_db(row["next_run"])
        overdue = (now - next_run).total_seconds()
        ranked.append(
            ClaimedInstance(
                key=InstanceKey(row["task"], row["arguments"] or "", int(row["instance"])),
                score=priority_score(int(row["frequency"]), overdue, int(row["priority"])),
                next_run=next_run,
                frequency=int(row["frequency"]),
                priority=int(row["priority"]),
                message=row.get("message"),
            )
        )
    ranked.sort(key=lambda c: (-c.score, c.next_run, c.key))

    seen: set[tuple[str, str]] = set()
    selected: list[ClaimedInstance] = []
    for candidate in ranked:
        ident = (candidate.key.task, candidate.key.arguments)
        if ident in seen:
            continue
        seen.add(ident)
        selected.append(candidate)
        if len(selected) >= limit:
            break
    return selected


class ClaimSelector(BaseRepository):
    """Selects and claims due instances for one agent."""

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        prefix: str = DEFAULT_PREFIX,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(conn, dialect, prefix)
        self.clock = clock

    def _candidate_sql(self) -> str:
        p = self.dialect.placeholder(0)
        return (
            f"SELECT s.task, s.arguments, s.instance, s.frequency, s.priority, "
            f"s.next_run, s.message, {score_sql(self.dialect, 's')} AS score "
            f"FROM {self.table('schedule')} s "
            f"JOIN {self.table('tasks')} t ON t.name = s.task "
            f"WHERE s.enabled = 1 AND t.enabled = 1 "
            f"AND s.status = {int(InstanceStatus.IDLE)} AND s.run_by IS NULL "
            f"AND s.next_run <= {p} "
            f"ORDER BY score DESC, s.next_run ASC "
            f"LIMIT {p}{self.dialect.skip_locked('s')}"
        )

    def claim(self, limit: int, token: ClaimToken, streaming: bool = False) -> list[ClaimedInstance]:
        """Claim up to ``limit`` due instances for ``token``.

        Returns the claimed instances in execution order. Contention only
        shrinks the batch.

        Raises:
            DatastoreError: The claim transaction failed (rolled back).
        """
        if limit < 1:
            return []
        now = self.clock()
        stamp = to_db(now)
        p = self.dialect.placeholder(0)
        claim_sql = (
            f"UPDATE {self.table('schedule')} "
            f"SET status = {int(InstanceStatus.CLAIMED)}, run_by = {p}, last_run = {p}, updated = {p} "
            f"WHERE task = {p} AND arguments = {p} AND instance = {p} "
            f"AND run_by IS NULL AND status = {int(InstanceStatus.IDLE)}"
        )

        claimed: list[ClaimedInstance] = []
        with self.transaction("claim instances"):
            begin = self.dialect.begin_exclusive()
            if begin:
                # sqlite3 refuses BEGIN inside its implicit transaction
                self.conn.commit()
                self.execute(begin)
            rows = self.query(self._candidate_sql(), (stamp, stamp, limit * CANDIDATE_FACTOR))
            for candidate in rank_candidates(rows, now, limit):
                key = candidate.key
                cur = self.execute(
                    claim_sql, (token, stamp, stamp, key.task, key.arguments, key.instance)
                )
                if cur.rowcount == 1:
                    claimed.append(candidate)

        logger.info(
            "claim_done",
            run_by=token,
            requested=limit,
            candidates=len(rows),
            claimed=len(claimed),
            streaming=streaming,
        )
        return claimed

    def active_claims(self) -> int:
        """Number of distinct claim tokens currently holding rows."""
        with self.guard("count active claims"):
            row = self.query_one(
                f"SELECT COUNT(DISTINCT run_by) AS n FROM {self.table('schedule')} "
                f"WHERE run_by IS NOT NULL"
            )
        return int(row["n"]) if row else 0


__all__ = ["CANDIDATE_FACTOR", "ClaimSelector", "rank_candidates"]
