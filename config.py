"""Environment-driven settings for the reservation engine and its HTTP entrypoint."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from shifts import validate_deadline_day


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def parse_window_days(raw: Optional[str], default: Optional[int] = 3) -> Optional[int]:
    """``any``/``none``/empty disables the manual protection window; otherwise an int."""
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in ("", "any", "none", "always"):
        return None
    days = int(value)
    if days < 0:
        raise ValueError("PROTECTION_WINDOW_DAYS must not be negative")
    return days


@dataclass
class Settings:
    database_url: str = "sqlite:///seat_shifts.db"
    total_seats: int = 59
    timezone: str = "UTC"
    # None: manual protection allowed any time; N: only in the last N days of a month
    protection_window_days: Optional[int] = 3
    max_protection_months: int = 3
    protection_deadline_day: int = 3
    reaper_interval_seconds: int = 60
    port: int = 5000

    def __post_init__(self):
        validate_deadline_day(self.protection_deadline_day)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            total_seats=_int_env("TOTAL_SEATS", cls.total_seats),
            timezone=os.getenv("SEAT_TIMEZONE", cls.timezone),
            protection_window_days=parse_window_days(os.getenv("PROTECTION_WINDOW_DAYS")),
            max_protection_months=_int_env("MAX_PROTECTION_MONTHS", cls.max_protection_months),
            protection_deadline_day=_int_env("PROTECTION_DEADLINE_DAY", cls.protection_deadline_day),
            reaper_interval_seconds=_int_env("REAPER_INTERVAL_SECONDS", cls.reaper_interval_seconds),
            port=_int_env("PORT", cls.port),
        )
