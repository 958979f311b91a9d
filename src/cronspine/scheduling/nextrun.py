"""Next-run computation.

Given the due time an instance just consumed and the outcome of its run,
``compute_next_run`` returns the next due time:

1. Failure with a task-level ``retry`` > 0: ``previous_due + retry``.
2. Otherwise the step is the instance frequency, or the scheduler-wide
   one-time retry for one-time instances.
3. Catch-up: ``periods = ceil((now - previous_due) / step)``; advance by
   ``max(periods, 1) * step`` from ``previous_due``. An agent that was down
   for ten periods schedules one run, not ten.
4. If either calendar allow-list is set, move forward to the first
   allowed day.

Example (frequency 3600, due two hours ago, success)::

    >>> from datetime import datetime, timedelta, UTC
    >>> now = datetime(2025, 1, 1, 12, tzinfo=UTC)
    >>> due = now - timedelta(hours=2)
    >>> compute_next_run(due, now, 3600, success=True, task_retry=0,
    ...                  one_time_retry=3600) - due
    datetime.timedelta(seconds=7200)
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime, timedelta

from cronspine.core.timestamps import ensure_utc
from cronspine.scheduling.calendar import next_qualifying


def compute_next_run(
    previous_due: datetime | None,
    now: datetime,
    frequency: int,
    *,
    success: bool,
    task_retry: int,
    one_time_retry: int,
    weekdays: Iterable[int] = (),
    monthdays: Iterable[int] = (),
) -> datetime:
    """Next due time for an instance after a run with the given outcome."""
    now = ensure_utc(now)
    due = ensure_utc(previous_due) if previous_due is not None else now

    if not success and task_retry > 0:
        new_due = due + timedelta(seconds=task_retry)
    else:
        step = frequency if frequency > 0 else one_time_retry
        step = max(step, 1)
        elapsed = (now - due).total_seconds()
        periods = math.ceil(elapsed / step)
        new_due = due + timedelta(seconds=max(periods, 1) * step)

    weekdays = list(weekdays)
    monthdays = list(monthdays)
    if not weekdays and not monthdays:
        return new_due
    return next_qualifying(new_due, weekdays, monthdays)


__all__ = ["compute_next_run"]
