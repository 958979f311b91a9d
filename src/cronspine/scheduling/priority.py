"""Claim priority arithmetic.

::

    score = frequency_weight + ln(seconds_overdue + 2) * 100 + priority * 1000

    frequency_weight = 1                          for one-time instances
                     = (MAX_U32 - f) / MAX_U32    for recurring ones

Each explicit priority step is worth about six hours of lateness; overdue time grows logarithmically so a job
late by days does not bury everything late by minutes; frequency only
breaks near-ties: one-time instances first, then the most frequent
recurring ones.

``score_sql`` renders the same formula for the candidate query so the
database narrows the window in roughly the order Python ranks it.
"""

from __future__ import annotations

import math

from cronspine.core.dialect import Dialect

MAX_U32 = 4294967295


def frequency_weight(frequency: int) -> float:
    if frequency <= 0:
        return 1.0
    return (MAX_U32 - frequency) / MAX_U32


def overdue_weight(seconds_overdue: float) -> float:
    # Rows are only eligible once due; clamp clock skew between agents
    return math.log(max(seconds_overdue, 0.0) + 2) * 100


def priority_score(frequency: int, seconds_overdue: float, priority: int) -> float:
    """Composite claim score; higher runs first."""
    return frequency_weight(frequency) + overdue_weight(seconds_overdue) + priority * 1000


def score_sql(dialect: Dialect, alias: str = "s") -> str:
    """SQL rendering of ``priority_score``. Consumes one ``now`` placeholder.

    Only valid over due rows (``next_run <= now``), where the overdue
    term is never negative.
    """
    overdue = dialect.overdue_seconds(f"{alias}.next_run")
    return (
        f"((CASE WHEN {alias}.frequency = 0 THEN 1.0 "
        f"ELSE ({MAX_U32}.0 - {alias}.frequency) / {MAX_U32}.0 END) "
        f"+ {dialect.ln(f'{overdue} + 2')} * 100 "
        f"+ {alias}.priority * 1000)"
    )


__all__ = ["MAX_U32", "frequency_weight", "overdue_weight", "priority_score", "score_sql"]
