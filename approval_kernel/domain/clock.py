"""
Clock -- injectable time source for the approval service.

The service asks a ``Clock`` for the time of every command it applies and
passes that time into the state machine.  Engines never read a clock, so a
recorded command history replays to the same escalation deadlines and the
same ``occurred_at`` on every audit event.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of timezone-aware ``datetime`` values."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock UTC time.  Not for tests or replay."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock that only moves when told to.

    Starts at 2024-01-01 12:00 UTC unless given a start time.  Escalation
    windows are whole hours, so tests mostly call ``advance_hours``.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current

    def advance_hours(self, hours: int) -> datetime:
        """Move past an escalation window of ``hours``."""
        return self.advance(hours * 3600)
