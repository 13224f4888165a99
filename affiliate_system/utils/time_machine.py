# affiliate_system/utils/time_machine.py
"""
Time machine - controls virtual time in the system.
Attribution windows, tier windows and sponsor windows all read time from here.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional
import calendar
import logging

logger = logging.getLogger(__name__)


def ensureUtc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def addMonths(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month length."""
    monthIndex = value.month - 1 + months
    year = value.year + monthIndex // 12
    month = monthIndex % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class TimeMachine:
    """Singleton for managing system time."""

    _instance = None
    _virtualTime: Optional[datetime] = None
    _isTestMode: bool = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def now(self) -> datetime:
        """Get current system time (real or virtual)."""
        if self._isTestMode and self._virtualTime:
            return self._virtualTime
        return datetime.now(timezone.utc)

    def daysAgo(self, days: int) -> datetime:
        return self.now - timedelta(days=days)

    def setTime(self, newTime: datetime, actorId: Optional[str] = None):
        """Set virtual time."""
        self._isTestMode = True
        self._virtualTime = ensureUtc(newTime)
        logger.info(f"Virtual time set to {self._virtualTime} by {actorId}")

    def advanceTime(self, days: int = 0, hours: int = 0):
        """Advance virtual time forward."""
        if not self._isTestMode:
            raise ValueError("Cannot advance time when not in test mode")

        self._virtualTime += timedelta(days=days, hours=hours)
        logger.info(f"Time advanced to {self._virtualTime}")

    def resetToRealTime(self):
        """Return to real time."""
        self._isTestMode = False
        self._virtualTime = None
        logger.info("Returned to real time")


# Global instance
timeMachine = TimeMachine()
