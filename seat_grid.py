"""Read model: every seat of a month with the resolved status of its three shifts."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from availability import Resolution, ShiftState, decide, fetch_ledgers
from shifts import SHIFT_ORDER, ShiftType, validate_month, validate_seat


def _iso(value: Optional[datetime], tz) -> Optional[str]:
    return value.astimezone(tz).isoformat() if value else None


@dataclass
class ShiftView:
    shift_type: ShiftType
    resolution: Resolution

    @property
    def status(self) -> ShiftState:
        return self.resolution.state

    def to_dict(self, tz) -> Dict[str, Any]:
        r = self.resolution
        booked = r.state == ShiftState.BOOKED
        protected = r.state == ShiftState.PROTECTED
        return {
            "shift_type": self.shift_type.value,
            "status": r.state.value,
            "user_id": r.holder_id if booked else None,
            "booking_id": r.booking_id if booked else None,
            "booked_at": _iso(r.booked_at, tz) if booked else None,
            "blocked_by_admin": r.state == ShiftState.BLOCKED,
            "protected_for_user": r.holder_id if protected else None,
            "protected_at": _iso(r.protected_at, tz) if protected else None,
            "protection_expires_at": _iso(r.expires_at, tz) if protected else None,
        }


@dataclass
class MonthContainer:
    """Projection of one seat for one month; never persisted, never authoritative."""

    seat_number: int
    month: int
    year: int
    shifts: List[ShiftView] = field(default_factory=list)

    def shift(self, shift_type: ShiftType) -> ShiftView:
        return next(s for s in self.shifts if s.shift_type == shift_type)

    @property
    def fully_available(self) -> bool:
        return all(s.status == ShiftState.AVAILABLE for s in self.shifts)

    def to_dict(self, tz) -> Dict[str, Any]:
        return {
            "seat_number": self.seat_number,
            "month": self.month,
            "year": self.year,
            "shifts": [s.to_dict(tz) for s in self.shifts],
        }


class SeatMonthGrid:
    """Builds month containers from the ledgers in three queries per call."""

    def __init__(self, db, clock, total_seats: int):
        self.db = db
        self.clock = clock
        self.total_seats = total_seats

    def _containers(self, month: int, year: int, seat_numbers, seat_filter=None) -> List[MonthContainer]:
        now = self.clock.now()
        with self.db.get_session() as session:
            records = fetch_ledgers(session, month, year, now, seat_number=seat_filter)

        containers = []
        for seat in seat_numbers:
            shifts = [
                ShiftView(shift, decide(*records.get((seat, shift), (None, None, None)), now=now))
                for shift in SHIFT_ORDER
            ]
            containers.append(MonthContainer(seat, month, year, shifts))
        return containers

    def get_seats_for_month(self, month: int, year: int,
                            total_seats: Optional[int] = None) -> List[MonthContainer]:
        validate_month(month, year)
        total = total_seats if total_seats is not None else self.total_seats
        return self._containers(month, year, range(1, total + 1))

    def get_seat_details(self, seat_number: int, month: int, year: int) -> MonthContainer:
        validate_seat(seat_number, self.total_seats)
        validate_month(month, year)
        return self._containers(month, year, [seat_number], seat_filter=seat_number)[0]
