"""Seat-shift reservation engine: the operation surface offered to outer layers."""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from availability import AvailabilityResolver, Resolution
from blocks import BlockManager
from clock import SystemClock, load_timezone
from config import Settings
from database_manager import DatabaseManager
from protections import ProtectionManager, ProtectionWindow
from reaper import ProtectionExpiryReaper, release_expired_protections
from reservations import ReservationCoordinator
from seat_grid import SeatMonthGrid
from shifts import ShiftKey, parse_shift_type, upcoming_months


class SeatEngine:
    """Wires the ledgers, resolver and coordinators around one database and one clock.

    Identity and role checks happen before any of these methods are called.
    """

    def __init__(self, db: DatabaseManager, clock=None, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.db = db
        self.clock = clock or SystemClock(load_timezone(self.settings.timezone))
        total = self.settings.total_seats

        self.resolver = AvailabilityResolver(db, self.clock, total_seats=total)
        self.protections = ProtectionManager(
            db, self.clock, self.resolver,
            window=ProtectionWindow(self.settings.protection_window_days),
            max_months=self.settings.max_protection_months,
            deadline_day=self.settings.protection_deadline_day,
            total_seats=total,
        )
        self.reservations = ReservationCoordinator(
            db, self.clock, self.resolver, self.protections, total_seats=total
        )
        self.blocks = BlockManager(db, self.clock, total_seats=total)
        self.grid = SeatMonthGrid(db, self.clock, total_seats=total)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, clock=None) -> "SeatEngine":
        settings = settings or Settings.from_env()
        return cls(DatabaseManager(settings.database_url), clock=clock, settings=settings)

    @property
    def tz(self):
        return self.clock.tz

    # Availability

    def resolve(self, seat_number: int, month: int, year: int, shift_type,
                requesting_user_id: Optional[str] = None) -> Resolution:
        key = ShiftKey(seat_number, month, year, parse_shift_type(shift_type))
        return self.resolver.resolve(key, requesting_user_id)

    def are_shifts_available(self, seat_number: int, month: int, year: int, shift_types,
                             requesting_user_id: Optional[str] = None) -> bool:
        return self.resolver.are_shifts_available(seat_number, month, year, shift_types,
                                                  requesting_user_id)

    # Bookings

    def book_shifts(self, seat_number: int, month: int, year: int, shift_types,
                    user_id: str, payment_ref: str):
        return self.reservations.book_shifts(seat_number, month, year, shift_types,
                                             user_id, payment_ref)

    def cancel_booking(self, booking_id):
        return self.reservations.cancel_booking(booking_id)

    def get_booking(self, booking_id):
        return self.reservations.get_booking(booking_id)

    def list_user_bookings(self, user_id: str, include_cancelled: bool = False):
        return self.reservations.list_user_bookings(user_id, include_cancelled)

    # Protections

    def protect_shifts(self, seat_number: int, target_months: Sequence[Tuple[int, int]],
                       shift_types, user_id: str):
        return self.protections.protect_shifts(seat_number, target_months, shift_types, user_id)

    def protect_from_booking(self, booking_id, user_id: str,
                             target_months: Sequence[Tuple[int, int]]):
        return self.protections.protect_from_booking(booking_id, user_id, target_months)

    def protection_status(self, booking_id, user_id: str):
        return self.protections.protection_status(booking_id, user_id)

    def release_expired_protections(self) -> int:
        return release_expired_protections(self.db, self.clock)

    def create_reaper(self) -> ProtectionExpiryReaper:
        return ProtectionExpiryReaper(self.db, self.clock, self.settings.reaper_interval_seconds)

    # Blocks

    def block_shifts(self, seat_number: int, month: int, year: int, shift_types, admin_id: str):
        return self.blocks.block_shifts(seat_number, month, year, shift_types, admin_id)

    def unblock_shifts(self, seat_number: int, month: int, year: int, shift_types) -> int:
        return self.blocks.unblock_shifts(seat_number, month, year, shift_types)

    # Read model

    def get_seats_for_month(self, month: int, year: int, total_seats: Optional[int] = None):
        return self.grid.get_seats_for_month(month, year, total_seats)

    def get_seat_details(self, seat_number: int, month: int, year: int):
        return self.grid.get_seat_details(seat_number, month, year)

    def available_months(self, count: int = 4) -> List[Dict[str, Any]]:
        return upcoming_months(self.clock.now(), count)
