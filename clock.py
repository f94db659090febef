"""Wall-clock abstraction so expiry windows can be simulated deterministically."""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo


def load_timezone(name: Optional[str]) -> tzinfo:
    """Resolve a timezone name, falling back to UTC when none is configured."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


class SystemClock:
    """Real time in the configured local timezone."""

    def __init__(self, tz: tzinfo = timezone.utc):
        self.tz = tz

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock:
    """Manually driven clock used by tests and maintenance scripts."""

    def __init__(self, current: datetime, tz: Optional[tzinfo] = None):
        if current.tzinfo is None:
            current = current.replace(tzinfo=tz or timezone.utc)
        self.tz = tz or current.tzinfo
        self._current = current.astimezone(self.tz)

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        if current.tzinfo is None:
            current = current.replace(tzinfo=self.tz)
        self._current = current.astimezone(self.tz)

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta expressed as keyword arguments."""
        self._current = self._current + timedelta(**kwargs)
        return self._current
