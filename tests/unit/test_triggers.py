"""
Unit tests for trigger expressions.
"""

from datetime import datetime, timezone

import pytest

from jobqueue.scheduler.triggers import InvalidTriggerError, Trigger, to_crontab


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestToCrontab:
    """Tests for phrase translation."""

    @pytest.mark.parametrize(
        "phrase,expected",
        [
            ("every minute", "* * * * *"),
            ("every 5 minutes", "*/5 * * * *"),
            ("every 2 hours", "0 */2 * * *"),
            ("hourly", "0 * * * *"),
            ("hourly at :15", "15 * * * *"),
            ("daily", "0 0 * * *"),
            ("daily at 08:30", "30 8 * * *"),
            ("weekly", "0 0 * * sun"),
            ("monthly", "0 0 1 * *"),
            ("  Every   Minute ", "* * * * *"),
            ("*/10 * * * *", "*/10 * * * *"),
        ],
    )
    def test_translation(self, phrase: str, expected: str):
        assert to_crontab(phrase) == expected

    @pytest.mark.parametrize(
        "expression",
        ["sometimes", "every 0 minutes", "daily at 25:00", "hourly at :75", "* * *"],
    )
    def test_invalid_expressions(self, expression: str):
        with pytest.raises(InvalidTriggerError):
            to_crontab(expression)

    def test_invalid_crontab_field(self):
        with pytest.raises(InvalidTriggerError):
            Trigger("99 * * * *")


class TestTrigger:
    """Tests for due evaluation."""

    def test_every_minute_is_always_due(self):
        trigger = Trigger("every minute")

        assert trigger.is_due(utc(2026, 1, 5, 12, 0))
        assert trigger.is_due(utc(2026, 1, 5, 12, 1, 37))

    def test_every_five_minutes(self):
        trigger = Trigger("every 5 minutes")

        assert trigger.is_due(utc(2026, 1, 5, 12, 5))
        assert not trigger.is_due(utc(2026, 1, 5, 12, 3))

    def test_seconds_within_due_minute_still_due(self):
        assert Trigger("daily at 08:30").is_due(utc(2026, 1, 5, 8, 30, 59))

    def test_daily_at(self):
        trigger = Trigger("daily at 08:30")

        assert trigger.is_due(utc(2026, 1, 5, 8, 30))
        assert not trigger.is_due(utc(2026, 1, 5, 8, 31))
        assert not trigger.is_due(utc(2026, 1, 5, 20, 30))

    def test_weekly_runs_on_sunday(self):
        trigger = Trigger("weekly")

        assert trigger.is_due(utc(2026, 1, 4, 0, 0))
        assert not trigger.is_due(utc(2026, 1, 5, 0, 0))

    def test_monthly(self):
        trigger = Trigger("monthly")

        assert trigger.is_due(utc(2026, 2, 1, 0, 0))
        assert not trigger.is_due(utc(2026, 2, 2, 0, 0))

    def test_timezone(self):
        trigger = Trigger("daily at 09:00", timezone="Europe/Berlin")

        # Berlin is UTC+1 in January
        assert trigger.is_due(utc(2026, 1, 5, 8, 0))
        assert not trigger.is_due(utc(2026, 1, 5, 9, 0))

    def test_next_after(self):
        trigger = Trigger("hourly")

        assert trigger.next_after(utc(2026, 1, 5, 12, 0)) == utc(2026, 1, 5, 13, 0)
        assert trigger.next_after(utc(2026, 1, 5, 12, 30, 10)) == utc(2026, 1, 5, 13, 0)
