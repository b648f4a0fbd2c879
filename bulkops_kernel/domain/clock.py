"""
Clock -- injectable wall-clock time.

Responsibility:
    Gives the orchestrator, runner, history store and statistics cache a
    single source of "now" so that timestamps on operation records and
    snapshot freshness checks can be driven deterministically in tests.

Non-goals:
    Durations (per-item timings, ETA smoothing) use ``time.monotonic`` in
    the runner and are not routed through the clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock that returns actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value on repeated calls until ``advance()``
    or ``set_time()`` is called.  Safe to advance from a test thread while
    worker threads read it.
    """

    def __init__(self, fixed_time: datetime | None = None):
        fixed_time = fixed_time or datetime(2024, 1, 1, 12, 0, 0)
        if fixed_time.tzinfo is None:
            fixed_time = fixed_time.replace(tzinfo=timezone.utc)
        self._fixed_time = fixed_time
        self._offset = timedelta(0)

    def now(self) -> datetime:
        return self._fixed_time + self._offset

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        if time.tzinfo is None:
            time = time.replace(tzinfo=timezone.utc)
        self._fixed_time = time
        self._offset = timedelta(0)

    def advance(self, seconds: float = 1) -> datetime:
        """Advance the clock by the specified seconds and return the new time."""
        self._offset += timedelta(seconds=seconds)
        return self.now()
