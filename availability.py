"""Availability resolution: merges the three ledgers into one decision per shift key.

Precedence, first match wins:

1. a live block                       -> BLOCKED
2. an active booking                  -> BOOKED (holder = owner)
3. a live protection of another user  -> PROTECTED (holder = protection owner)
   a live protection of the requester -> AVAILABLE to that requester
4. otherwise                          -> AVAILABLE
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import false, true

from models import Block, Booking, BookingShift, Protection
from shifts import (ShiftKey, ShiftType, keys_for, validate_month, validate_seat,
                    validate_shift_types, parse_shift_type)


class ShiftState(str, enum.Enum):
    AVAILABLE = 'available'
    BOOKED = 'booked'
    BLOCKED = 'blocked'
    PROTECTED = 'protected'


@dataclass(frozen=True)
class Resolution:
    state: ShiftState
    holder_id: Optional[str] = None
    booking_id: Optional[str] = None
    booked_at: Optional[datetime] = None
    protected_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    blocked_by: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return self.state == ShiftState.AVAILABLE


AVAILABLE = Resolution(ShiftState.AVAILABLE)


def decide(block: Optional[Block], booking: Optional[Booking], protection: Optional[Protection],
           now: datetime, requesting_user_id: Optional[str] = None) -> Resolution:
    """Pure precedence decision over the records found for one shift key."""
    if block is not None and block.is_blocked:
        return Resolution(ShiftState.BLOCKED, blocked_by=block.blocked_by)

    if booking is not None and booking.is_active:
        return Resolution(ShiftState.BOOKED, holder_id=booking.user_id,
                          booking_id=str(booking.id), booked_at=booking.booked_at)

    if protection is not None and protection.is_live(now):
        if requesting_user_id is not None and protection.user_id == requesting_user_id:
            # The holder may book their own protected shift
            return Resolution(ShiftState.AVAILABLE, holder_id=protection.user_id,
                              protected_at=protection.protected_at,
                              expires_at=protection.expires_at)
        return Resolution(ShiftState.PROTECTED, holder_id=protection.user_id,
                          protected_at=protection.protected_at,
                          expires_at=protection.expires_at)

    return AVAILABLE


LedgerRecords = Tuple[Optional[Block], Optional[Booking], Optional[Protection]]


def fetch_ledgers(session, month: int, year: int, now: datetime,
                  seat_number: Optional[int] = None,
                  shift_types: Optional[Iterable[ShiftType]] = None
                  ) -> Dict[Tuple[int, ShiftType], LedgerRecords]:
    """Load live blocks, active bookings and live protections for a month, keyed by (seat, shift)."""

    def scoped(query, model):
        query = query.filter(model.month == month, model.year == year)
        if seat_number is not None:
            query = query.filter(model.seat_number == seat_number)
        if shift_types is not None:
            query = query.filter(model.shift_type.in_(list(shift_types)))
        return query

    blocks = scoped(session.query(Block), Block).filter(Block.is_blocked == true()).all()

    booked = scoped(
        session.query(BookingShift.seat_number, BookingShift.shift_type, Booking)
        .join(Booking, BookingShift.booking_id == Booking.id),
        BookingShift,
    ).filter(BookingShift.is_active == true()).all()

    protections = scoped(session.query(Protection), Protection).filter(
        Protection.converted_to_booking == false(),
        Protection.expires_at > now,
    ).all()

    records: Dict[Tuple[int, ShiftType], List] = {}

    def slot(seat, shift):
        return records.setdefault((seat, shift), [None, None, None])

    for block in blocks:
        slot(block.seat_number, block.shift_type)[0] = block
    for seat, shift, booking in booked:
        slot(seat, shift)[1] = booking
    for protection in protections:
        slot(protection.seat_number, protection.shift_type)[2] = protection

    return {k: tuple(v) for k, v in records.items()}


class AvailabilityResolver:
    """Read-only view over the ledgers; never mutates anything."""

    def __init__(self, db, clock, total_seats: Optional[int] = None):
        self.db = db
        self.clock = clock
        self.total_seats = total_seats

    def resolve(self, key: ShiftKey, requesting_user_id: Optional[str] = None) -> Resolution:
        validate_seat(key.seat_number, self.total_seats)
        validate_month(key.month, key.year)
        shift_type = parse_shift_type(key.shift_type)

        with self.db.get_session() as session:
            resolved = self.resolve_in(session, key.seat_number, key.month, key.year,
                                       [shift_type], requesting_user_id)
            return resolved[shift_type]

    def are_shifts_available(self, seat_number: int, month: int, year: int,
                             shift_types, requesting_user_id: Optional[str] = None) -> bool:
        """True only when every requested shift resolves to AVAILABLE for the requester."""
        validate_seat(seat_number, self.total_seats)
        validate_month(month, year)
        parsed = validate_shift_types(shift_types)

        with self.db.get_session() as session:
            return not self.unavailable_keys(session, seat_number, month, year, parsed,
                                             requesting_user_id)

    def resolve_in(self, session, seat_number: int, month: int, year: int,
                   shift_types: List[ShiftType], requesting_user_id: Optional[str] = None,
                   now: Optional[datetime] = None) -> Dict[ShiftType, Resolution]:
        now = now or self.clock.now()
        records = fetch_ledgers(session, month, year, now,
                                seat_number=seat_number, shift_types=shift_types)
        return {
            shift: decide(*records.get((seat_number, shift), (None, None, None)),
                          now=now, requesting_user_id=requesting_user_id)
            for shift in shift_types
        }

    def unavailable_keys(self, session, seat_number: int, month: int, year: int,
                         shift_types: List[ShiftType], requesting_user_id: Optional[str] = None,
                         now: Optional[datetime] = None,
                         ignore_booking_id=None) -> List[ShiftKey]:
        """Keys among the request that the requester cannot claim, evaluated inside ``session``.

        ``ignore_booking_id`` masks the caller's own freshly written booking so the check
        can be repeated after the claim rows are flushed.
        """
        now = now or self.clock.now()
        records = fetch_ledgers(session, month, year, now,
                                seat_number=seat_number, shift_types=shift_types)
        unavailable = []
        for key in keys_for(seat_number, month, year, shift_types):
            block, booking, protection = records.get((seat_number, key.shift_type),
                                                     (None, None, None))
            if booking is not None and ignore_booking_id is not None and booking.id == ignore_booking_id:
                booking = None
            if not decide(block, booking, protection, now, requesting_user_id).is_available:
                unavailable.append(key)
        return unavailable
