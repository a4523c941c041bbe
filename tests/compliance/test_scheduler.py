"""
Compliance scheduler tests.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from compliance.scheduler import AsyncioCronScheduler, CronExpression


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestCronParsing:
    """Tests for CronExpression.parse."""

    def test_wildcards(self):
        cron = CronExpression.parse("* * * * *")

        assert cron.minutes == frozenset(range(60))
        assert cron.days_of_week == frozenset(range(7))
        assert cron.day_of_month_restricted is False

    def test_lists_ranges_and_steps(self):
        cron = CronExpression.parse("0,30 9-17/4 1-5 */3 1-5")

        assert cron.minutes == {0, 30}
        assert cron.hours == {9, 13, 17}
        assert cron.days_of_month == {1, 2, 3, 4, 5}
        assert cron.months == {1, 4, 7, 10}
        assert cron.days_of_week == {1, 2, 3, 4, 5}

    def test_step_from_single_value(self):
        assert CronExpression.parse("5/15 * * * *").minutes == {5, 20, 35, 50}

    def test_sunday_as_seven(self):
        assert CronExpression.parse("0 0 * * 7").days_of_week == {0}

    @pytest.mark.parametrize(
        "expression",
        [
            "* * * *",
            "* * * * * *",
            "60 * * * *",
            "* 24 * * *",
            "* * 0 * *",
            "*/0 * * * *",
            "a * * * *",
            "5-1 * * * *",
            "1,,2 * * * *",
        ],
    )
    def test_invalid(self, expression):
        with pytest.raises(ValueError):
            CronExpression.parse(expression)


class TestNextAfter:
    """Tests for CronExpression.next_after."""

    def test_daily_midnight(self):
        cron = CronExpression.parse("0 0 * * *")

        assert cron.next_after(_utc(2024, 1, 1, 0, 0)) == _utc(2024, 1, 2, 0, 0)
        assert cron.next_after(_utc(2024, 1, 1, 23, 59, 30)) == _utc(2024, 1, 2, 0, 0)

    def test_every_fifteen_minutes(self):
        cron = CronExpression.parse("*/15 * * * *")

        assert cron.next_after(_utc(2024, 1, 1, 10, 7)) == _utc(2024, 1, 1, 10, 15)
        assert cron.next_after(_utc(2024, 1, 1, 10, 45)) == _utc(2024, 1, 1, 11, 0)

    def test_weekdays_only(self):
        cron = CronExpression.parse("30 9 * * 1-5")

        # 2024-01-05 is a Friday
        assert cron.next_after(_utc(2024, 1, 5, 10, 0)) == _utc(2024, 1, 8, 9, 30)

    def test_day_fields_match_either(self):
        cron = CronExpression.parse("0 0 13 * 5")

        assert cron.next_after(_utc(2024, 1, 1)) == _utc(2024, 1, 5)
        assert cron.next_after(_utc(2024, 1, 12)) == _utc(2024, 1, 13)

    def test_stepped_wildcard_day_keeps_both_fields_required(self):
        cron = CronExpression.parse("0 0 */2 * 1")

        # Odd days that are also Mondays: 2024-01-08 is even, 2024-01-15 is odd
        assert not cron.day_of_month_restricted
        assert cron.next_after(_utc(2024, 1, 1, 1, 0)) == _utc(2024, 1, 15)

    def test_naive_input_is_utc(self):
        cron = CronExpression.parse("0 12 * * *")

        assert cron.next_after(datetime(2024, 1, 1, 6, 0)) == _utc(2024, 1, 1, 12, 0)

    def test_leap_day(self):
        cron = CronExpression.parse("0 0 29 2 *")

        assert cron.next_after(_utc(2024, 3, 1)) == _utc(2028, 2, 29)

    def test_impossible_date(self):
        with pytest.raises(ValueError):
            CronExpression.parse("0 0 31 2 *").next_after(_utc(2024, 1, 1))

    def test_matches(self):
        cron = CronExpression.parse("0 0 * * *")

        assert cron.matches(_utc(2024, 1, 1, 0, 0)) is True
        assert cron.matches(_utc(2024, 1, 1, 0, 1)) is False


class TestAsyncioCronJob:
    """Tests for the asyncio job loop."""

    @pytest.mark.asyncio
    async def test_runs_on_schedule_and_survives_failures(self, clock):
        sleeps = []
        calls = []
        done = asyncio.Event()

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            clock.advance(seconds=seconds)
            await asyncio.sleep(0)

        async def job():
            calls.append(clock.now())
            if len(calls) == 1:
                raise RuntimeError("tick failed")
            done.set()

        scheduled = AsyncioCronScheduler(clock=clock, sleep=fake_sleep).schedule("0 * * * *", job)
        scheduled.start()
        await asyncio.wait_for(done.wait(), timeout=1)

        assert scheduled.running is True
        await scheduled.stop()

        assert scheduled.running is False
        assert sleeps[:2] == [3600.0, 3600.0]
        assert calls[:2] == [_utc(2024, 1, 1, 1, 0), _utc(2024, 1, 1, 2, 0)]

    def test_invalid_expression_rejected_at_schedule_time(self):
        with pytest.raises(ValueError):
            AsyncioCronScheduler().schedule("never", lambda: None)

    @pytest.mark.asyncio
    async def test_stop_before_start(self, clock):
        job = AsyncioCronScheduler(clock=clock).schedule("0 0 * * *", lambda: None)

        await job.stop()

        assert job.running is False
