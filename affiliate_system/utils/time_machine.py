# affiliate_system/utils/time_machine.py
"""
Time machine for testing - controls virtual time in the system.
"""
from datetime import datetime, date, timezone, timedelta
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class TimeMachine:
    """Singleton for managing system time. Engine time is always UTC."""

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

    @property
    def today(self) -> date:
        return self.now.date()

    @property
    def currentWeekStart(self) -> date:
        """Monday of the current ISO week."""
        return self.weekStartFor(self.today)

    @property
    def previousWeekStart(self) -> date:
        return self.currentWeekStart - timedelta(days=7)

    @property
    def isWeekStart(self) -> bool:
        """Check if today is Monday - weekly batch day."""
        return self.today.weekday() == 0

    @staticmethod
    def weekStartFor(day) -> date:
        if isinstance(day, datetime):
            day = day.date()
        return day - timedelta(days=day.weekday())

    @staticmethod
    def weekEndFor(weekStart: date) -> date:
        return weekStart + timedelta(days=6)

    @staticmethod
    def weekBounds(weekStart: date):
        """Half-open [start, end) range of a week as naive UTC datetimes."""
        start = datetime(weekStart.year, weekStart.month, weekStart.day)
        return start, start + timedelta(days=7)

    @staticmethod
    def startOfDay(day: date) -> datetime:
        """Midnight of a day as a naive UTC datetime, comparable with stored columns."""
        return datetime(day.year, day.month, day.day)

    def setTime(self, newTime: datetime, adminId: Optional[int] = None):
        """Set virtual time for testing."""
        if newTime.tzinfo is None:
            newTime = newTime.replace(tzinfo=timezone.utc)
        self._isTestMode = True
        self._virtualTime = newTime
        logger.info(f"Virtual time set to {newTime} by admin {adminId}")

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
