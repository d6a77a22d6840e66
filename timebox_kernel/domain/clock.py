"""
Injectable clocks.

The scheduler's budget check, checkpoint timestamps, retry event times and
trigger due-times all read a Clock handed to them at construction, so tests
control time completely and nothing calls ``datetime.now()`` directly.

Implementations:
    - SystemClock: real UTC time.
    - DeterministicClock: frozen until ``advance()`` / ``set_time()``.
    - SteppingClock: moves a fixed step on every read.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware "now"."""

    @abstractmethod
    def now(self) -> datetime: ...

    def elapsed_since(self, start: datetime) -> timedelta:
        return self.now() - start


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Clock that only moves when a test moves it.

    Job actions in tests call ``advance()`` to stand in for work that eats
    into the scheduler's budget.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or EPOCH

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        """Move forward by ``seconds`` (or a timedelta); return the new time."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        self._current += step
        return self._current


class SteppingClock(Clock):
    """Each ``now()`` returns the previous reading plus ``step_seconds``.

    The scheduler reads the clock once per budget check, so a stepping
    clock makes "N advances fit in the budget" exact without touching the
    job's action.
    """

    def __init__(self, start: datetime | None = None, step_seconds: float = 1.0):
        if step_seconds < 0:
            raise ValueError(f"step_seconds must be >= 0, got {step_seconds}")
        self._next = start or EPOCH
        self._step = timedelta(seconds=step_seconds)

    def now(self) -> datetime:
        reading = self._next
        self._next += self._step
        return reading
