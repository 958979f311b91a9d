"""Tests for day-of-week / day-of-month gating."""

from datetime import UTC, datetime

import pytest

from cronspine.core.errors import ScheduleError
from cronspine.scheduling.calendar import matches, next_qualifying, parse_day_list

WEDNESDAY = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


class TestParseDayList:
    @pytest.mark.parametrize(
        "value, maximum, expected",
        [
            (None, 7, []),
            ("", 7, []),
            ("[3, 1, 3]", 7, [1, 3]),
            ('[1, "x", 9, "4"]', 7, [1, 4]),
            ("not json", 7, []),
            ([0, 31, 32], 31, [31]),
            ([True, 2.0, 2.5], 31, [2]),
            (5, 7, [5]),
            ({"a": 1}, 7, []),
        ],
    )
    def test_normalisation(self, value, maximum, expected):
        assert parse_day_list(value, maximum) == expected


class TestMatches:
    def test_no_constraints(self):
        assert matches(WEDNESDAY, [], [])

    def test_weekday(self):
        assert matches(WEDNESDAY, [3], [])
        assert not matches(WEDNESDAY, [1, 2], [])

    def test_both_lists_must_match(self):
        assert matches(WEDNESDAY, [3], [1])
        assert not matches(WEDNESDAY, [3], [2])


class TestNextQualifying:
    def test_unconstrained_returns_input(self):
        assert next_qualifying(WEDNESDAY) is WEDNESDAY

    def test_already_allowed(self):
        assert next_qualifying(WEDNESDAY, [3]) == WEDNESDAY

    def test_advances_to_weekday_keeping_time(self):
        monday = next_qualifying(WEDNESDAY, weekdays=[1])
        assert monday == datetime(2025, 1, 6, 12, 0, tzinfo=UTC)

    def test_month_day(self):
        assert next_qualifying(WEDNESDAY, monthdays=[15]) == datetime(2025, 1, 15, 12, 0, tzinfo=UTC)

    def test_month_day_31_skips_short_months(self):
        feb = datetime(2025, 2, 1, 8, 0, tzinfo=UTC)
        assert next_qualifying(feb, monthdays=[31]) == datetime(2025, 3, 31, 8, 0, tzinfo=UTC)

    def test_combined(self):
        """First Friday the 13th after 2025-01-01."""
        result = next_qualifying(WEDNESDAY, weekdays=[5], monthdays=[13])
        assert result == datetime(2025, 6, 13, 12, 0, tzinfo=UTC)

    def test_unsatisfiable_raises(self):
        with pytest.raises(ScheduleError, match="No date on or after"):
            next_qualifying(WEDNESDAY, weekdays=[8])
