"""
Time abstraction layer for the POS core.

Provides injectable clock that can be:
- Real-time (for a running terminal)
- Simulated (for tests and replaying recovery scenarios)

Transaction ages, rule validity windows and receipt dates all read the
clock, so the 24-hour expiry and dated promotions are testable without
sleeping.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import pytz

DEFAULT_TERMINAL_TZ = "UTC"


class Clock(ABC):
    """Abstract clock interface"""

    def __init__(self, terminal_tz: Optional[str] = None):
        self._terminal_tz = pytz.timezone(terminal_tz or DEFAULT_TERMINAL_TZ)

    @abstractmethod
    def now(self) -> datetime:
        """Get current time (always UTC)"""

    @property
    def terminal_tz(self):
        return self._terminal_tz

    def now_local(self) -> datetime:
        """Current time in the terminal's timezone"""
        return self.now().astimezone(self._terminal_tz)

    def today(self) -> date:
        """Business date at the terminal (used on receipts)"""
        return self.now_local().date()


class RealTimeClock(Clock):
    """Wall clock for a running terminal"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class SimulatedClock(Clock):
    """Manually driven clock"""

    def __init__(self, start_time: datetime, terminal_tz: Optional[str] = None):
        """
        Args:
            start_time: Initial time (must be timezone-aware)
            terminal_tz: Terminal timezone name
        """
        super().__init__(terminal_tz)
        if start_time.tzinfo is None:
            raise ValueError("start_time must be timezone-aware (UTC)")

        self._current_time = start_time.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current_time

    def advance(self, delta: timedelta):
        """Advance simulated time by delta."""
        self._current_time += delta

    def set_time(self, new_time: datetime):
        """Set simulated time to specific value (must be timezone-aware)."""
        if new_time.tzinfo is None:
            raise ValueError("new_time must be timezone-aware (UTC)")

        self._current_time = new_time.astimezone(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure *dt* is timezone-aware and in UTC.

    - If naive (no tzinfo): attach UTC (assumes caller meant UTC).
    - If aware but not UTC: convert to UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_clock(terminal_tz: Optional[str] = None) -> Clock:
    """Clock for a live terminal."""
    return RealTimeClock(terminal_tz)
