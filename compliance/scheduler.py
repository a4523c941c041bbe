"""
Compliance Scheduler.

============================================================
PURPOSE
============================================================
Recurring execution of the compliance run.

- Scheduler: injectable abstraction (schedule -> ScheduledJob)
- CronExpression: five-field cron parser evaluated in UTC
- AsyncioCronScheduler: asyncio task per job, sleeping until
  the next fire time

A failing tick is logged and the job keeps running.

============================================================
CRON SYNTAX
============================================================
minute hour day-of-month month day-of-week

Each field accepts *, numbers, lists (1,2), ranges (1-5)
and steps (*/15, 1-30/5). Day-of-week 0 and 7 are Sunday.
When both day fields are restricted (neither starts with "*"),
either may match.

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, FrozenSet, Optional

from core.clock import ClockProtocol, SystemClock


logger = logging.getLogger(__name__)


JobFunction = Callable[[], Awaitable[object]]

DEFAULT_SCHEDULE = "0 0 * * *"


# ============================================================
# CRON EXPRESSION
# ============================================================

_FIELD_BOUNDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day_of_month", 1, 31),
    ("month", 1, 12),
    ("day_of_week", 0, 7),
)

# Upper bound on the search; every valid expression fires within it.
_MAX_SEARCH = timedelta(days=366 * 5)


def _parse_field(text: str, name: str, low: int, high: int) -> FrozenSet[int]:
    values = set()

    for part in text.split(","):
        if not part:
            raise ValueError(f"Empty entry in cron {name} field: {text!r}")

        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) == 0:
                raise ValueError(f"Invalid step in cron {name} field: {text!r}")
            step = int(step_text)

        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_text, end_text = part.split("-", 1)
            if not (start_text.isdigit() and end_text.isdigit()):
                raise ValueError(f"Invalid range in cron {name} field: {text!r}")
            start, end = int(start_text), int(end_text)
        elif part.isdigit():
            start = int(part)
            end = high if step > 1 else start
        else:
            raise ValueError(f"Invalid value in cron {name} field: {text!r}")

        if start < low or end > high or start > end:
            raise ValueError(f"Cron {name} field out of range {low}-{high}: {text!r}")

        values.update(range(start, end + 1, step))

    return frozenset(values)


@dataclass(frozen=True)
class CronExpression:
    """Parsed five-field cron expression."""

    expression: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days_of_month: FrozenSet[int]
    months: FrozenSet[int]
    days_of_week: FrozenSet[int]
    day_of_month_restricted: bool
    day_of_week_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> "CronExpression":
        """
        Parse "m h dom mon dow".

        Raises:
            ValueError: Malformed expression
        """
        fields = expression.split()
        if len(fields) != 5:
            raise ValueError(f"Cron expression needs 5 fields, got {len(fields)}: {expression!r}")

        parsed = [
            _parse_field(text, name, low, high)
            for text, (name, low, high) in zip(fields, _FIELD_BOUNDS)
        ]
        minutes, hours, days_of_month, months, days_of_week = parsed

        # Sunday is both 0 and 7
        if 7 in days_of_week:
            days_of_week = (days_of_week - {7}) | {0}

        return cls(
            expression=expression,
            minutes=minutes,
            hours=hours,
            days_of_month=days_of_month,
            months=months,
            days_of_week=frozenset(days_of_week),
            day_of_month_restricted=not fields[2].startswith("*"),
            day_of_week_restricted=not fields[4].startswith("*"),
        )

    def _day_matches(self, moment: datetime) -> bool:
        dom_match = moment.day in self.days_of_month
        # Python weekday: Monday=0; cron: Sunday=0
        dow_match = (moment.weekday() + 1) % 7 in self.days_of_week

        if self.day_of_month_restricted and self.day_of_week_restricted:
            return dom_match or dow_match
        return dom_match and dow_match

    def matches(self, moment: datetime) -> bool:
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and moment.month in self.months
            and self._day_matches(moment)
        )

    def next_after(self, moment: datetime) -> datetime:
        """
        First fire time strictly after `moment`.

        Naive datetimes are treated as UTC; the result is aware UTC.

        Raises:
            ValueError: The expression never fires (e.g. 31 February)
        """
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        moment = moment.astimezone(timezone.utc)

        candidate = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = candidate + _MAX_SEARCH

        while candidate <= limit:
            if candidate.month not in self.months or not self._day_matches(candidate):
                candidate = candidate.replace(hour=0, minute=0) + timedelta(days=1)
                continue
            if candidate.hour not in self.hours:
                candidate = candidate.replace(minute=0) + timedelta(hours=1)
                continue
            if candidate.minute not in self.minutes:
                candidate += timedelta(minutes=1)
                continue
            return candidate

        raise ValueError(f"Cron expression {self.expression!r} has no fire time")


# ============================================================
# SCHEDULER INTERFACE
# ============================================================

class ScheduledJob(ABC):
    """Handle returned by a scheduler."""

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    async def stop(self) -> None:
        pass

    @property
    @abstractmethod
    def running(self) -> bool:
        pass


class Scheduler(ABC):
    """Schedules a coroutine function on a cron expression."""

    @abstractmethod
    def schedule(self, expression: str, fn: JobFunction) -> ScheduledJob:
        pass


# ============================================================
# ASYNCIO IMPLEMENTATION
# ============================================================

class AsyncioCronJob(ScheduledJob):
    """One cron job driven by an asyncio task."""

    def __init__(
        self,
        cron: CronExpression,
        fn: JobFunction,
        clock: ClockProtocol,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._cron = cron
        self._fn = fn
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def expression(self) -> str:
        return self._cron.expression

    def start(self) -> None:
        """Start the job loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Scheduled job started with expression {self._cron.expression!r}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Scheduled job stopped ({self._cron.expression!r})")

    async def _loop(self) -> None:
        while True:
            now = self._clock.now()
            fire_at = self._cron.next_after(now)
            wait_seconds = (fire_at - now).total_seconds()

            logger.debug(f"Next run at {fire_at.isoformat()} (in {wait_seconds:.0f}s)")
            await self._sleep(max(0.0, wait_seconds))

            try:
                await self._fn()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Scheduled job failed: {e}", exc_info=True)


class AsyncioCronScheduler(Scheduler):
    """Default scheduler for the compliance monitor."""

    def __init__(
        self,
        clock: Optional[ClockProtocol] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._clock = clock or SystemClock()
        self._sleep = sleep

    def schedule(self, expression: str, fn: JobFunction) -> AsyncioCronJob:
        return AsyncioCronJob(CronExpression.parse(expression), fn, self._clock, self._sleep)
