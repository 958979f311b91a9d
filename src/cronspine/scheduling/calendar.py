"""Day-of-week / day-of-month resolution.

``next_qualifying`` answers "what is the first moment at or after ``ts``
that falls on an allowed day?" It keeps the time of day and advances one
calendar day at a time in UTC.

Weekdays use ISO numbering (Monday = 1 … Sunday = 7).

Examples:
    >>> from datetime import datetime, UTC
    >>> friday = datetime(2025, 1, 3, 9, 30, tzinfo=UTC)
    >>> next_qualifying(friday, weekdays=[1], monthdays=[]).isoformat()
    '2025-01-06T09:30:00+00:00'
    >>> parse_day_list('[1, "x", 9, 3]', 7)
    [1, 3]
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from cronspine.core.errors import ScheduleError
from cronspine.core.timestamps import ensure_utc

# Any weekday/monthday combination that can occur does so well within this
SEARCH_HORIZON_DAYS = 366 * 12


def parse_day_list(value: Any, maximum: int) -> list[int]:
    """Normalise a day allow-list.

    Accepts JSON text, any iterable, or ``None``. Entries that are not
    integers in ``1..maximum`` are dropped; the result is sorted and
    de-duplicated.
    """
    if value is None:
        return []
    if isinstance(value, str):
        if not value.strip():
            return []
        try:
            value = json.loads(value)
        except ValueError:
            return []
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = [value]
    if not isinstance(value, Iterable) or isinstance(value, (str, bytes, dict)):
        return []

    days = set()
    for item in value:
        if isinstance(item, bool):
            continue
        if isinstance(item, str) and item.strip().isdigit():
            item = int(item)
        if isinstance(item, float) and item.is_integer():
            item = int(item)
        if isinstance(item, int) and 1 <= item <= maximum:
            days.add(item)
    return sorted(days)


def matches(ts: datetime, weekdays: Iterable[int], monthdays: Iterable[int]) -> bool:
    """True when ``ts`` falls on an allowed weekday and day of month."""
    weekdays = set(weekdays)
    monthdays = set(monthdays)
    ts = ensure_utc(ts)
    if weekdays and ts.isoweekday() not in weekdays:
        return False
    if monthdays and ts.day not in monthdays:
        return False
    return True


def next_qualifying(
    ts: datetime,
    weekdays: Iterable[int] = (),
    monthdays: Iterable[int] = (),
) -> datetime:
    """Smallest timestamp ``>= ts`` on an allowed day, same time of day.

    Returns ``ts`` unchanged when both allow-lists are empty.

    Raises:
        ScheduleError: If no day within the search horizon qualifies
            (for example monthdays ``[31]`` on a calendar without one).
    """
    weekdays = set(weekdays)
    monthdays = set(monthdays)
    if not weekdays and not monthdays:
        return ts

    candidate = ensure_utc(ts)
    for _ in range(SEARCH_HORIZON_DAYS):
        if matches(candidate, weekdays, monthdays):
            return candidate
        candidate += timedelta(days=1)

    raise ScheduleError(
        f"No date on or after {ts.isoformat()} matches weekdays={sorted(weekdays)} "
        f"monthdays={sorted(monthdays)}"
    )


__all__ = ["matches", "next_qualifying", "parse_day_list"]
