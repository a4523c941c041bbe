"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
Every timestamp the verifier stores and every compliance
deadline the monitor computes is read from an injected clock.
Production wires SystemClock; tests drive MockClock through
a 30-day window in a few lines.

Storage convention: snapshot times are naive UTC datetimes,
grant times are epoch milliseconds. The helpers at the bottom
convert between the two.

============================================================
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional
import threading
import time


def _as_utc(value: datetime) -> datetime:
    # Naive values are taken to be UTC already
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ClockProtocol(ABC):
    """Source of the current UTC time."""

    @abstractmethod
    def now(self) -> datetime:
        """Aware UTC datetime."""

    def timestamp(self) -> float:
        return self.now().timestamp()

    def now_ms(self) -> int:
        return int(self.timestamp() * 1000)

    def format_iso(self, dt: Optional[datetime] = None) -> str:
        return (dt or self.now()).isoformat()


class SystemClock(ClockProtocol):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        return time.time()


class MockClock(ClockProtocol):
    """
    Hand-driven clock for tests.

        clock = MockClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        clock.advance(days=28)
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = _as_utc(initial_time or datetime.now(timezone.utc))
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def set_time(self, new_time: datetime) -> None:
        with self._lock:
            self._time = _as_utc(new_time)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """Move forward; kwargs are timedelta fields (days=, hours=, ...)."""
        with self._lock:
            self._time += timedelta(seconds=seconds, **kwargs)

    @contextmanager
    def freeze(self, at_time: Optional[datetime] = None) -> Iterator[None]:
        """Pin the clock (optionally elsewhere) and restore it on exit."""
        saved = self.now()
        if at_time is not None:
            self.set_time(at_time)
        try:
            yield
        finally:
            self.set_time(saved)


# =============================================================
# CONVERSIONS
# =============================================================


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    return int(_as_utc(value).timestamp() * 1000)
