"""Tests for next-run computation."""

from datetime import UTC, datetime

import pytest

from nodesched.core.errors import ScheduleError
from nodesched.scheduling.recurrence import (
    format_cron_expression,
    next_run_at,
    upcoming_runs,
    validate_cron_fields,
)


def at(*args):
    return datetime(*args, tzinfo=UTC)


class TestFormatCronExpression:
    """Test field assembly and validation."""

    def test_field_order(self):
        assert format_cron_expression("5", "4", "3", "2", "1") == "5 4 3 2 1"

    def test_fields_are_trimmed(self):
        assert format_cron_expression(" 0", "3 ", "*", "*", "*") == "0 3 * * *"

    @pytest.mark.parametrize("bad", ["", "   ", "1 2"])
    def test_rejects_empty_or_split_fields(self, bad):
        with pytest.raises(ScheduleError):
            format_cron_expression(bad, "*", "*", "*", "*")

    def test_validate(self):
        assert validate_cron_fields("*/5", "*", "*", "*", "*") is True
        assert validate_cron_fields("61", "*", "*", "*", "*") is False
        assert validate_cron_fields("", "*", "*", "*", "*") is False


class TestNextRunAt:
    """Test next_run_at."""

    def test_daily_before_slot(self):
        """0 3 * * * from 02:59 fires at 03:00 the same day."""
        assert next_run_at("0", "3", "*", "*", "*", at(2024, 1, 1, 2, 59)) == at(2024, 1, 1, 3, 0)

    def test_strictly_after_anchor(self):
        """An anchor exactly on a slot moves to the next slot."""
        assert next_run_at("0", "3", "*", "*", "*", at(2024, 1, 1, 3, 0)) == at(2024, 1, 2, 3, 0)

    def test_seconds_are_truncated(self):
        """Anchor seconds are ignored; result has zero seconds."""
        result = next_run_at("*", "*", "*", "*", "*", at(2024, 1, 1, 3, 0, 45, 999))
        assert result == at(2024, 1, 1, 3, 1)
        assert result.second == 0
        assert result.microsecond == 0

    def test_step_and_list_fields(self):
        assert next_run_at("*/15", "*", "*", "*", "*", at(2024, 1, 1, 3, 16)) == at(2024, 1, 1, 3, 30)
        assert next_run_at("0", "6,18", "*", "*", "*", at(2024, 1, 1, 7, 0)) == at(2024, 1, 1, 18, 0)

    def test_day_of_month_or_day_of_week(self):
        """With both day fields restricted, either one matching fires."""
        # 2024-01-02 is a Tuesday; next Monday is 2024-01-08, before Feb 1
        assert next_run_at("0", "0", "1", "*", "1", at(2024, 1, 2, 0, 0)) == at(2024, 1, 8, 0, 0)

    def test_naive_anchor_is_utc(self):
        assert next_run_at("0", "3", "*", "*", "*", datetime(2024, 1, 1, 2, 0)) == at(2024, 1, 1, 3, 0)

    def test_result_is_utc_aware(self):
        result = next_run_at("0", "3", "*", "*", "*", at(2024, 1, 1, 2, 0))
        assert result.tzinfo == UTC

    def test_not_before_skips_missed_slots(self):
        """A schedule that fell behind fires once, at the next slot after now."""
        stale = at(2024, 1, 1, 3, 0)
        now = at(2024, 1, 5, 12, 0)
        result = next_run_at("0", "3", "*", "*", "*", stale, not_before=now)
        assert result == at(2024, 1, 6, 3, 0)

    def test_not_before_ignored_when_result_is_later(self):
        result = next_run_at("0", "3", "*", "*", "*", at(2024, 1, 1, 2, 0), not_before=at(2024, 1, 1, 1, 0))
        assert result == at(2024, 1, 1, 3, 0)

    def test_timezone(self):
        """Fields are read in the given zone; the result is UTC."""
        # 03:00 in New York (EST, UTC-5) is 08:00 UTC
        result = next_run_at("0", "3", "*", "*", "*", at(2024, 1, 1, 0, 0), timezone="America/New_York")
        assert result == at(2024, 1, 1, 8, 0)

    def test_unknown_timezone(self):
        with pytest.raises(ScheduleError, match="Unknown timezone"):
            next_run_at("0", "3", "*", "*", "*", at(2024, 1, 1), timezone="Mars/Olympus")

    @pytest.mark.parametrize(
        "fields",
        [
            ("61", "*", "*", "*", "*"),
            ("*", "25", "*", "*", "*"),
            ("*", "*", "*", "13", "*"),
            ("abc", "*", "*", "*", "*"),
        ],
    )
    def test_invalid_fields(self, fields):
        with pytest.raises(ScheduleError):
            next_run_at(*fields, at(2024, 1, 1))

    def test_defaults_to_clock(self):
        """Without an anchor the result is in the future."""
        result = next_run_at("*", "*", "*", "*", "*")
        assert result > datetime.now(UTC).replace(second=0, microsecond=0)


class TestUpcomingRuns:
    """Test upcoming_runs."""

    def test_consecutive_slots(self):
        runs = upcoming_runs("0", "*/6", "*", "*", "*", at(2024, 1, 1, 1, 0), count=4)
        assert runs == [
            at(2024, 1, 1, 6, 0),
            at(2024, 1, 1, 12, 0),
            at(2024, 1, 1, 18, 0),
            at(2024, 1, 2, 0, 0),
        ]

    def test_zero_count(self):
        assert upcoming_runs("*", "*", "*", "*", "*", at(2024, 1, 1), count=0) == []
