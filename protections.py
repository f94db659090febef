"""Protection management: time-boxed holds on future months of a seat's shifts."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from sqlalchemy import false

from errors import InvalidInput, NotBookingOwner, NotFound, ProtectionWindowClosed, ShiftUnavailable
from models import Protection, find_booking
from shifts import (ShiftType, add_months, days_in_month, days_remaining_in_month, is_past_month,
                    month_label, protection_deadline, validate_deadline_day,
                    validate_identifier, validate_month, validate_seat, validate_shift_types)

logger = logging.getLogger(__name__)


class ProtectionWindow:
    """When a user may ask for manual protection.

    ``days_before_month_end=None`` allows it at any time; ``N`` restricts it to the
    last N days of the current month.
    """

    def __init__(self, days_before_month_end: Optional[int] = 3):
        self.days_before_month_end = days_before_month_end

    @property
    def unrestricted(self) -> bool:
        return self.days_before_month_end is None

    def is_open(self, now: datetime) -> bool:
        return self.days_until_open(now) == 0

    def days_until_open(self, now: datetime) -> int:
        if self.unrestricted:
            return 0
        return max(0, days_remaining_in_month(now) - self.days_before_month_end)


@dataclass
class ProtectionStatus:
    seat_number: int
    month: int
    year: int
    shift_types: List[ShiftType]
    can_protect: bool
    is_past_booking: bool
    days_remaining: int
    days_in_month: int
    days_until_window: int
    protection_months: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seat_number": self.seat_number,
            "month": self.month,
            "year": self.year,
            "shift_types": [s.value for s in self.shift_types],
            "can_protect": self.can_protect,
            "is_past_booking": self.is_past_booking,
            "days_remaining": self.days_remaining,
            "days_in_month": self.days_in_month,
            "days_until_window": self.days_until_window,
            "protection_months": self.protection_months,
        }


def normalize_target_months(target_months: Any, max_months: int) -> List[Tuple[int, int]]:
    if not isinstance(target_months, (list, tuple)) or not target_months:
        raise InvalidInput("at least one target month is required")
    if len(target_months) > max_months:
        raise InvalidInput(f"at most {max_months} months can be protected at once")

    months = []
    for entry in target_months:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            raise InvalidInput(f"target month must be a (month, year) pair, got {entry!r}")
        months.append(validate_month(entry[0], entry[1]))

    if len(set(months)) != len(months):
        raise InvalidInput("target months must not contain duplicates")
    return months


class ProtectionManager:
    """Creates protections; agnostic to why they are requested."""

    def __init__(self, db, clock, resolver, window: Optional[ProtectionWindow] = None,
                 max_months: int = 3, deadline_day: int = 3, total_seats: Optional[int] = None):
        self.db = db
        self.clock = clock
        self.resolver = resolver
        self.window = window or ProtectionWindow()
        self.max_months = max_months
        self.deadline_day = validate_deadline_day(deadline_day)
        self.total_seats = total_seats

    def expiry_for(self, month: int, year: int) -> datetime:
        return protection_deadline(month, year, self.clock.tz, self.deadline_day)

    def protect_shifts(self, seat_number: int, target_months: Sequence[Tuple[int, int]],
                       shift_types, user_id: str) -> List[Protection]:
        """Protect the same shifts of a seat across 1..max_months months, all or nothing."""
        validate_seat(seat_number, self.total_seats)
        shifts = validate_shift_types(shift_types)
        user_id = validate_identifier(user_id, "user_id")
        months = normalize_target_months(target_months, self.max_months)

        now = self.clock.now()
        for month, year in months:
            if self.expiry_for(month, year) <= now:
                raise InvalidInput(f"protection deadline for {month}/{year} has already passed")

        description = f"protection of seat {seat_number} for {len(months)} month(s)"
        protections = self.db.run_claim(
            lambda session: self._claim(session, seat_number, months, shifts, user_id),
            description,
        )

        logger.info(
            f"Protected seat {seat_number} {[s.value for s in shifts]} for user {user_id} "
            f"in {', '.join(f'{m}/{y}' for m, y in months)}"
        )
        return protections

    def _claim(self, session, seat_number: int, months: List[Tuple[int, int]],
               shifts: List[ShiftType], user_id: str) -> List[Protection]:
        now = self.clock.now()
        created = []

        # Lock months in calendar order
        for month, year in sorted(months, key=lambda m: (m[1], m[0])):
            self.db.lock_seat_month(session, seat_number, month, year)

        for month, year in months:
            # Step 1: every shift of this month must be claimable by the user
            unavailable = self.resolver.unavailable_keys(session, seat_number, month, year,
                                                         shifts, user_id, now)
            if unavailable:
                raise ShiftUnavailable(
                    f"seat {seat_number} is not available for {month}/{year}",
                    keys=unavailable, month=month, year=year,
                )

            on_keys = (
                Protection.seat_number == seat_number,
                Protection.month == month,
                Protection.year == year,
                Protection.shift_type.in_(shifts),
                Protection.converted_to_booking == false(),
            )

            # Step 2: resolve lapsed holds still occupying the unique index
            session.query(Protection).filter(*on_keys, Protection.expires_at <= now).update(
                {Protection.converted_to_booking: True}, synchronize_session=False
            )

            # Step 3: replace this user's previous holds on the same keys
            session.query(Protection).filter(*on_keys, Protection.user_id == user_id).delete(
                synchronize_session=False
            )

            # Step 4: one record per shift so expiry and conversion stay independent
            expires_at = self.expiry_for(month, year)
            for shift in shifts:
                protection = Protection(
                    seat_number=seat_number,
                    month=month,
                    year=year,
                    shift_type=shift,
                    user_id=user_id,
                    protected_at=now,
                    expires_at=expires_at,
                    converted_to_booking=False,
                )
                session.add(protection)
                created.append(protection)

        self.db.flush_claims(session, f"seat {seat_number} protections")

        # A block or booking committed while we were writing still wins
        for month, year in months:
            unavailable = self.resolver.unavailable_keys(session, seat_number, month, year,
                                                         shifts, user_id, now)
            if unavailable:
                raise ShiftUnavailable(
                    f"seat {seat_number} was taken for {month}/{year}",
                    keys=unavailable, month=month, year=year,
                )

        return created

    def _owned_booking(self, session, booking_id, user_id: str):
        booking = find_booking(session, booking_id)
        if booking is None:
            raise NotFound(f"booking {booking_id} not found")
        if booking.user_id != user_id or not booking.is_active:
            raise NotBookingOwner(f"booking {booking_id} is not an active booking of {user_id}")
        return booking

    def protection_status(self, booking_id, user_id: str) -> ProtectionStatus:
        """Whether the owner of a booking may extend it now, and into which months."""
        user_id = validate_identifier(user_id, "user_id")
        with self.db.get_session() as session:
            booking = self._owned_booking(session, booking_id, user_id)
            seat_number, month, year = booking.seat_number, booking.month, booking.year
            shift_types = booking.shift_types

        now = self.clock.now()
        past = is_past_month(month, year, now)
        protection_months = []
        for offset in range(1, self.max_months + 1):
            next_m, next_y = add_months(month, year, offset)
            protection_months.append({
                "month": next_m,
                "year": next_y,
                "label": month_label(next_m, next_y),
                "months_from_booking": offset,
                "expires_at": self.expiry_for(next_m, next_y).isoformat(),
            })

        return ProtectionStatus(
            seat_number=seat_number,
            month=month,
            year=year,
            shift_types=shift_types,
            can_protect=not past and self.window.is_open(now),
            is_past_booking=past,
            days_remaining=days_remaining_in_month(now),
            days_in_month=days_in_month(now.month, now.year),
            days_until_window=self.window.days_until_open(now),
            protection_months=protection_months,
        )

    def protect_from_booking(self, booking_id, user_id: str,
                             target_months: Sequence[Tuple[int, int]]) -> List[Protection]:
        """Extend an active booking into later months, subject to the protection window."""
        user_id = validate_identifier(user_id, "user_id")
        with self.db.get_session() as session:
            booking = self._owned_booking(session, booking_id, user_id)
            seat_number, month, year = booking.seat_number, booking.month, booking.year
            shift_types = booking.shift_types

        now = self.clock.now()
        if is_past_month(month, year, now):
            raise InvalidInput(f"booking {booking_id} is for a past month")
        if not self.window.is_open(now):
            wait = self.window.days_until_open(now)
            raise ProtectionWindowClosed(
                f"protection opens in the last {self.window.days_before_month_end} days of the month",
                days_until_open=wait,
            )

        return self.protect_shifts(seat_number, target_months, shift_types, user_id)
