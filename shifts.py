"""Shift primitives: the closed shift enum, shift keys, validation and month arithmetic."""

import calendar
import enum
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Dict, Iterable, List, Optional, Tuple

from errors import InvalidInput, InvalidMonth, InvalidShiftType


class ShiftType(str, enum.Enum):
    """The three fixed daily blocks of a seat."""
    MORNING = 'morning'
    AFTERNOON = 'afternoon'
    NIGHT = 'night'


SHIFT_ORDER = (ShiftType.MORNING, ShiftType.AFTERNOON, ShiftType.NIGHT)


@dataclass(frozen=True)
class ShiftKey:
    """One claimable unit: a shift of a seat for one calendar month."""

    seat_number: int
    month: int
    year: int
    shift_type: ShiftType

    def __str__(self) -> str:
        return f"seat {self.seat_number} {self.shift_type.value} {self.month:02d}/{self.year}"


def parse_shift_type(value: Any) -> ShiftType:
    if isinstance(value, ShiftType):
        return value
    if isinstance(value, str):
        try:
            return ShiftType(value.strip().lower())
        except ValueError:
            pass
    raise InvalidShiftType(f"invalid shift type: {value!r}")


def validate_shift_types(values: Any) -> List[ShiftType]:
    """Parse a non-empty, duplicate-free list of shift types, keeping request order."""
    if isinstance(values, (str, ShiftType)) or not isinstance(values, Iterable):
        raise InvalidInput("shift types must be provided as a list")

    parsed = [parse_shift_type(v) for v in values]
    if not parsed:
        raise InvalidInput("at least one shift type is required")
    if len(set(parsed)) != len(parsed):
        raise InvalidInput("shift types must not contain duplicates")
    return parsed


def validate_month(month: Any, year: Any) -> Tuple[int, int]:
    # bool is an int subclass; reject it explicitly
    if isinstance(month, bool) or not isinstance(month, int):
        raise InvalidMonth(f"month must be an integer, got {month!r}")
    if not 1 <= month <= 12:
        raise InvalidMonth(f"month must be between 1 and 12, got {month}")
    if isinstance(year, bool) or not isinstance(year, int) or not 1970 <= year <= 9999:
        raise InvalidInput(f"invalid year: {year!r}")
    return month, year


def validate_seat(seat_number: Any, total_seats: Optional[int] = None) -> int:
    if isinstance(seat_number, bool) or not isinstance(seat_number, int) or seat_number < 1:
        raise InvalidInput(f"invalid seat number: {seat_number!r}")
    if total_seats is not None and seat_number > total_seats:
        raise InvalidInput(f"seat number {seat_number} exceeds the {total_seats} available seats")
    return seat_number


def validate_identifier(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{name} must be a non-empty string")
    return value.strip()


def keys_for(seat_number: int, month: int, year: int,
             shift_types: Iterable[ShiftType]) -> List[ShiftKey]:
    return [ShiftKey(seat_number, month, year, s) for s in shift_types]


def next_month(month: int, year: int) -> Tuple[int, int]:
    """The calendar month after (month, year); December rolls into January."""
    return add_months(month, year, 1)


def add_months(month: int, year: int, offset: int) -> Tuple[int, int]:
    index = (year * 12 + (month - 1)) + offset
    return index % 12 + 1, index // 12


# Every month has a 28th
LATEST_DEADLINE_DAY = 28


def validate_deadline_day(day: Any) -> int:
    if isinstance(day, bool) or not isinstance(day, int) or not 1 <= day <= LATEST_DEADLINE_DAY:
        raise ValueError(f"protection deadline day must be between 1 and {LATEST_DEADLINE_DAY}, got {day!r}")
    return day


def protection_deadline(month: int, year: int, tz: tzinfo, day: int = 3) -> datetime:
    """Day-N 23:59:59 local time of the given month; protections expire then."""
    return datetime(year, month, day, 23, 59, 59, tzinfo=tz)


def days_in_month(month: int, year: int) -> int:
    return calendar.monthrange(year, month)[1]


def days_remaining_in_month(now: datetime) -> int:
    return days_in_month(now.month, now.year) - now.day


def is_past_month(month: int, year: int, now: datetime) -> bool:
    return (year, month) < (now.year, now.month)


def month_label(month: int, year: int) -> str:
    return f"{calendar.month_name[month]} {year}"


def upcoming_months(now: datetime, count: int = 4) -> List[Dict[str, Any]]:
    """The current month followed by the next ``count - 1`` months, labelled for display."""
    months = []
    for offset in range(count):
        month, year = add_months(now.month, now.year, offset)
        months.append({
            "month": month,
            "year": year,
            "label": month_label(month, year),
            "is_current": offset == 0,
        })
    return months
