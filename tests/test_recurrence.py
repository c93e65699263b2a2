"""Tests for next-occurrence calculation."""

import os
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from domains.reminders import RecurrencePattern, next_occurrence, parse_pattern


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestNextOccurrence:
    """Successor instants keep the wall-clock time of the original."""

    def test_weekly(self):
        assert next_occurrence(utc(2025, 3, 15, 9, 0), "weekly") == utc(2025, 3, 22, 9, 0)

    def test_daily(self):
        assert next_occurrence(utc(2025, 6, 1, 8, 0), "daily") == utc(2025, 6, 2, 8, 0)

    def test_daily_crosses_year(self):
        assert next_occurrence(utc(2025, 12, 31, 23, 30), "daily") == utc(2026, 1, 1, 23, 30)

    def test_monthly(self):
        assert next_occurrence(utc(2025, 4, 10, 7, 15), "monthly") == utc(2025, 5, 10, 7, 15)

    def test_monthly_clamps_to_month_end(self):
        assert next_occurrence(utc(2025, 1, 31, 9, 0), "monthly") == utc(2025, 2, 28, 9, 0)

    def test_monthly_clamps_to_leap_day(self):
        assert next_occurrence(utc(2024, 1, 31, 9, 0), "monthly") == utc(2024, 2, 29, 9, 0)

    def test_monthly_clamped_day_sticks(self):
        feb = next_occurrence(utc(2025, 1, 31, 9, 0), "monthly")
        assert next_occurrence(feb, "monthly") == utc(2025, 3, 28, 9, 0)

    def test_pattern_is_case_insensitive(self):
        assert next_occurrence(utc(2025, 6, 1, 8, 0), "DAILY") == utc(2025, 6, 2, 8, 0)

    def test_accepts_enum(self):
        assert next_occurrence(utc(2025, 6, 1, 8, 0), RecurrencePattern.WEEKLY) == utc(2025, 6, 8, 8, 0)

    @pytest.mark.parametrize("pattern", [None, "", "yearly", "hourly", 7])
    def test_unknown_pattern_has_no_successor(self, pattern):
        assert next_occurrence(utc(2025, 6, 1, 8, 0), pattern) is None


class TestParsePattern:

    def test_known_values(self):
        assert parse_pattern("daily") is RecurrencePattern.DAILY
        assert parse_pattern(" Monthly ") is RecurrencePattern.MONTHLY

    def test_unknown_values(self):
        assert parse_pattern("fortnightly") is None
        assert parse_pattern(None) is None
