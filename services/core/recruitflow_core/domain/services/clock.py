"""Time source for the follow-up engine.

Every service takes a ``Clock`` so due-date arithmetic and sweeps can be
driven deterministically in tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock frozen at a given instant until advanced."""

    def __init__(self, at: datetime):
        self._now = ensure_utc(at)

    def now(self) -> datetime:
        return self._now

    def set(self, at: datetime) -> None:
        self._now = ensure_utc(at)

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by ``timedelta(**kwargs)``."""
        self._now = self._now + timedelta(**kwargs)
        return self._now


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime.

    The store drops tzinfo, so naive values read back are taken as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Render a timestamp as an ISO-8601 string in UTC."""
    value = ensure_utc(value)
    return value.isoformat() if value is not None else None


_default_clock = SystemClock()


def get_clock() -> Clock:
    """Get the process-wide default clock."""
    return _default_clock
