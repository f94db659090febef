"""Reservation coordination: all-or-nothing multi-shift bookings and their follow-ups."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import false
from sqlalchemy.exc import SQLAlchemyError

from errors import NotFound, ReservationError, ShiftUnavailable
from models import Booking, BookingShift, BookingStatus, Protection, find_booking
from shifts import (ShiftType, month_label, next_month, validate_identifier, validate_month,
                    validate_seat, validate_shift_types)

logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    booking: Booking
    auto_protected: bool = False
    protected_month: Optional[int] = None
    protected_year: Optional[int] = None
    protections: List[Protection] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "booking": self.booking.to_dict(),
            "auto_protected": self.auto_protected,
            "protected_month": self.protected_month,
            "protected_year": self.protected_year,
            "protected_month_label": (
                month_label(self.protected_month, self.protected_year)
                if self.auto_protected else None
            ),
        }


class ReservationCoordinator:
    """Turns a confirmed payment into a booking and keeps protections consistent with it."""

    def __init__(self, db, clock, resolver, protections, total_seats: Optional[int] = None,
                 auto_protect: bool = True):
        self.db = db
        self.clock = clock
        self.resolver = resolver
        self.protections = protections
        self.total_seats = total_seats
        self.auto_protect = auto_protect

    def book_shifts(self, seat_number: int, month: int, year: int, shift_types,
                    user_id: str, payment_ref: str) -> BookingResult:
        """Book every requested shift or none of them.

        Only called after the payment collaborator confirmed ``payment_ref``. The next
        month is protected for the same user on a best-effort basis afterwards.
        """
        validate_seat(seat_number, self.total_seats)
        validate_month(month, year)
        shifts = validate_shift_types(shift_types)
        user_id = validate_identifier(user_id, "user_id")
        payment_ref = validate_identifier(payment_ref, "payment_ref")

        description = f"booking of seat {seat_number} for {month}/{year}"
        booking = self.db.run_claim(
            lambda session: self._claim(session, seat_number, month, year, shifts,
                                        user_id, payment_ref),
            description,
        )
        logger.info(
            f"Booking confirmed: seat {seat_number} {[s.value for s in shifts]} "
            f"{month}/{year} for user {user_id}, booking_id={booking.id}"
        )

        result = BookingResult(booking=booking)
        if self.auto_protect:
            self._protect_next_month(result)
        return result

    def _claim(self, session, seat_number: int, month: int, year: int,
               shifts: List[ShiftType], user_id: str, payment_ref: str) -> Booking:
        now = self.clock.now()
        self.db.lock_seat_month(session, seat_number, month, year)

        # Step 1: every shift must be free for this user
        unavailable = self.resolver.unavailable_keys(session, seat_number, month, year,
                                                     shifts, user_id, now)
        if unavailable:
            raise ShiftUnavailable(
                f"shift(s) {', '.join(k.shift_type.value for k in unavailable)} of seat "
                f"{seat_number} are not available for {month}/{year}",
                keys=unavailable, month=month, year=year,
            )

        # Step 2: write the booking and one claim row per shift
        booking = Booking(
            seat_number=seat_number,
            month=month,
            year=year,
            user_id=user_id,
            payment_ref=payment_ref,
            status=BookingStatus.ACTIVE,
            booked_at=now,
        )
        booking.shifts = [
            BookingShift(
                seat_number=seat_number,
                month=month,
                year=year,
                shift_type=shift,
                user_id=user_id,
                is_active=True,
            ) for shift in shifts
        ]
        session.add(booking)
        self.db.flush_claims(session, f"seat {seat_number} {month}/{year}")

        # Step 3: a block or foreign protection written meanwhile still wins
        contested = self.resolver.unavailable_keys(session, seat_number, month, year, shifts,
                                                   user_id, now, ignore_booking_id=booking.id)
        if contested:
            raise ShiftUnavailable(
                f"seat {seat_number} was taken for {month}/{year}",
                keys=contested, month=month, year=year,
            )

        # Step 4: the user's own protections on these shifts are now fulfilled
        converted = session.query(Protection).filter(
            Protection.seat_number == seat_number,
            Protection.month == month,
            Protection.year == year,
            Protection.shift_type.in_(shifts),
            Protection.user_id == user_id,
            Protection.converted_to_booking == false(),
            Protection.expires_at > now,
        ).update({Protection.converted_to_booking: True}, synchronize_session=False)

        if converted:
            logger.info(f"Converted {converted} protection(s) of user {user_id} into booking")

        return booking

    def _protect_next_month(self, result: BookingResult) -> None:
        booking = result.booking
        next_m, next_y = next_month(booking.month, booking.year)

        try:
            protections = self.protections.protect_shifts(
                booking.seat_number, [(next_m, next_y)], booking.shift_types, booking.user_id
            )
        except ReservationError as e:
            logger.info(f"Auto-protection skipped for seat {booking.seat_number} {next_m}/{next_y}: {e}")
            return
        except SQLAlchemyError as e:
            logger.warning(f"Auto-protection failed for seat {booking.seat_number} {next_m}/{next_y}: {e}")
            return

        result.auto_protected = True
        result.protected_month = next_m
        result.protected_year = next_y
        result.protections = protections

    def cancel_booking(self, booking_id) -> Booking:
        """Flip a booking to cancelled and release its shifts; repeated calls are no-ops."""
        with self.db.get_session() as session:
            booking = find_booking(session, booking_id)
            if booking is None:
                raise NotFound(f"booking {booking_id} not found")

            if booking.is_active:
                booking.status = BookingStatus.CANCELLED
                for claim in booking.shifts:
                    claim.is_active = False
                logger.info(f"Booking cancelled: booking_id={booking.id}")

            return booking

    def get_booking(self, booking_id) -> Booking:
        with self.db.get_session() as session:
            booking = find_booking(session, booking_id)
            if booking is None:
                raise NotFound(f"booking {booking_id} not found")
            return booking

    def list_user_bookings(self, user_id: str, include_cancelled: bool = False) -> List[Booking]:
        """Bookings of a user, most recent month first."""
        user_id = validate_identifier(user_id, "user_id")
        with self.db.get_session() as session:
            query = session.query(Booking).filter(Booking.user_id == user_id)
            if not include_cancelled:
                query = query.filter(Booking.status == BookingStatus.ACTIVE)
            return query.order_by(
                Booking.year.desc(), Booking.month.desc(), Booking.booked_at.desc()
            ).all()
