"""Tests for cron next-occurrence calculation."""

from datetime import datetime, timedelta, timezone

import pytest

from core.exceptions import InvalidScheduleError
from triggers.cron import next_occurrence, next_occurrence_or_fallback


@pytest.mark.unit
class TestNextOccurrence:

    def test_weekly_rule_in_new_york(self):
        # Monday 09:00 EDT has just passed
        result = next_occurrence("0 9 * * MON", "America/New_York", datetime(2026, 10, 12, 13, 0))
        assert result == datetime(2026, 10, 19, 13, 0)
        assert result.tzinfo is None

    def test_crosses_dst_end(self):
        # EDT -> EST on 2026-11-01, wall clock stays 09:00
        result = next_occurrence("0 9 * * MON", "America/New_York", datetime(2026, 10, 26, 13, 0))
        assert result == datetime(2026, 11, 2, 14, 0)

    def test_strictly_after_reference(self):
        result = next_occurrence("*/5 * * * *", "UTC", datetime(2026, 10, 12, 13, 5))
        assert result == datetime(2026, 10, 12, 13, 10)

    def test_aware_reference_is_normalized(self):
        reference = datetime(2026, 10, 12, 15, 0, tzinfo=timezone(timedelta(hours=2)))
        assert next_occurrence("0 * * * *", "UTC", reference) == datetime(2026, 10, 12, 14, 0)

    def test_missing_timezone_means_utc(self):
        assert next_occurrence("30 8 * * *", None, datetime(2026, 10, 12, 9, 0)) == datetime(
            2026, 10, 13, 8, 30
        )

    @pytest.mark.parametrize("expression", ["", "   ", "not a cron", "0 9 * *", "61 * * * *"])
    def test_invalid_expression(self, expression):
        with pytest.raises(InvalidScheduleError):
            next_occurrence(expression, "UTC", datetime(2026, 10, 12))

    def test_unknown_timezone(self):
        with pytest.raises(InvalidScheduleError, match="Mars/Olympus"):
            next_occurrence("0 9 * * *", "Mars/Olympus", datetime(2026, 10, 12))


@pytest.mark.unit
class TestFallback:

    def test_valid_expression_is_unchanged(self):
        now = datetime(2026, 10, 12, 13, 2)
        assert next_occurrence_or_fallback("0 9 * * MON", "America/New_York", now) == datetime(
            2026, 10, 19, 13, 0
        )

    def test_invalid_expression_retries_a_day_later(self, settings):
        now = datetime(2026, 10, 12, 13, 2)
        result = next_occurrence_or_fallback("every monday", "UTC", now, rule_id="r-1")
        assert result == now + timedelta(hours=settings.INVALID_CRON_FALLBACK_HOURS)
