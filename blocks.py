"""Administrative blocks: vetoes over shift keys that override protections."""

from typing import List, Optional
import logging

from sqlalchemy import true

from errors import ShiftAlreadyBooked
from models import Block, BookingShift
from shifts import (ShiftType, keys_for, validate_identifier, validate_month, validate_seat,
                    validate_shift_types)

logger = logging.getLogger(__name__)


class BlockManager:

    def __init__(self, db, clock, total_seats: Optional[int] = None):
        self.db = db
        self.clock = clock
        self.total_seats = total_seats

    def block_shifts(self, seat_number: int, month: int, year: int, shift_types,
                     admin_id: str) -> List[Block]:
        """Place a live block on every requested shift, or on none if any is booked."""
        validate_seat(seat_number, self.total_seats)
        validate_month(month, year)
        shifts = validate_shift_types(shift_types)
        admin_id = validate_identifier(admin_id, "admin_id")

        blocks = self.db.run_claim(
            lambda session: self._claim(session, seat_number, month, year, shifts, admin_id),
            f"block of seat {seat_number} for {month}/{year}",
        )
        logger.info(
            f"Blocked seat {seat_number} {[s.value for s in shifts]} {month}/{year} by {admin_id}"
        )
        return blocks

    def _booked_keys(self, session, seat_number: int, month: int, year: int,
                     shifts: List[ShiftType]):
        booked = {
            row.shift_type for row in session.query(BookingShift.shift_type).filter(
                BookingShift.seat_number == seat_number,
                BookingShift.month == month,
                BookingShift.year == year,
                BookingShift.shift_type.in_(shifts),
                BookingShift.is_active == true(),
            )
        }
        return [k for k in keys_for(seat_number, month, year, shifts) if k.shift_type in booked]

    def _claim(self, session, seat_number: int, month: int, year: int,
               shifts: List[ShiftType], admin_id: str) -> List[Block]:
        now = self.clock.now()
        self.db.lock_seat_month(session, seat_number, month, year)

        booked = self._booked_keys(session, seat_number, month, year, shifts)
        if booked:
            raise ShiftAlreadyBooked(
                f"shift(s) {', '.join(k.shift_type.value for k in booked)} of seat "
                f"{seat_number} are booked for {month}/{year} and cannot be blocked",
                keys=booked,
            )

        existing = {
            block.shift_type: block for block in session.query(Block).filter(
                Block.seat_number == seat_number,
                Block.month == month,
                Block.year == year,
                Block.shift_type.in_(shifts),
            ).order_by(Block.is_blocked.asc(), Block.blocked_at.asc())
        }

        blocks = []
        for shift in shifts:
            # Replace whatever block history exists for the key with one live block
            block = existing.get(shift)
            if block is None:
                block = Block(seat_number=seat_number, month=month, year=year, shift_type=shift)
                session.add(block)
            block.blocked_by = admin_id
            block.blocked_at = now
            block.is_blocked = True
            blocks.append(block)

        self.db.flush_claims(session, f"seat {seat_number} blocks")

        # A booking committed while we were writing wins over the block
        booked = self._booked_keys(session, seat_number, month, year, shifts)
        if booked:
            raise ShiftAlreadyBooked(f"seat {seat_number} was booked for {month}/{year}", keys=booked)

        return blocks

    def unblock_shifts(self, seat_number: int, month: int, year: int, shift_types) -> int:
        """Lift live blocks on the requested shifts; returns how many were lifted."""
        validate_seat(seat_number, self.total_seats)
        validate_month(month, year)
        shifts = validate_shift_types(shift_types)

        with self.db.get_session() as session:
            lifted = session.query(Block).filter(
                Block.seat_number == seat_number,
                Block.month == month,
                Block.year == year,
                Block.shift_type.in_(shifts),
                Block.is_blocked == true(),
            ).update({Block.is_blocked: False}, synchronize_session=False)

        logger.info(f"Unblocked {lifted} shift(s) of seat {seat_number} {month}/{year}")
        return lifted
