"""Clock abstraction and timestamp helpers.

All timestamps are timezone-aware UTC. They are stored in the database as
fixed-width ISO-8601 strings so that string comparison orders them
chronologically.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current UTC time."""


class SystemClock(Clock):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant. Used for testing."""

    def __init__(self, at: datetime):
        self._at = ensure_utc(at)

    def now(self) -> datetime:
        return self._at

    def set(self, at: datetime) -> None:
        self._at = ensure_utc(at)

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by ``timedelta(**kwargs)``."""
        self._at = self._at + timedelta(**kwargs)
        return self._at


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize a datetime for storage."""
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp."""
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


# Global clock instance
_clock: Optional[Clock] = None


def get_clock() -> Clock:
    """Get or create the global clock instance."""
    global _clock
    if _clock is None:
        _clock = SystemClock()
    return _clock


def reset_clock() -> None:
    """Reset the global clock instance. Used for testing."""
    global _clock
    _clock = None
