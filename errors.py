"""Typed failures raised by the reservation engine and translated by the HTTP layer."""

from typing import Iterable, Optional, Tuple


class ReservationError(Exception):
    """Base class for every engine failure."""


class InvalidInput(ReservationError):
    """Malformed seat, month, year, shift list or identifier."""


class InvalidShiftType(InvalidInput):
    pass


class InvalidMonth(InvalidInput):
    pass


class ShiftUnavailable(ReservationError):
    """A requested shift is held by a block, a booking or another user's protection."""

    def __init__(self, message: str, keys: Optional[Iterable] = None,
                 month: Optional[int] = None, year: Optional[int] = None):
        super().__init__(message)
        self.keys: Tuple = tuple(keys or ())
        self.month = month
        self.year = year


class ShiftAlreadyBooked(ReservationError):
    """Attempted to block a shift that has an active booking."""

    def __init__(self, message: str, keys: Optional[Iterable] = None):
        super().__init__(message)
        self.keys: Tuple = tuple(keys or ())


class NotFound(ReservationError):
    pass


class NotBookingOwner(ReservationError):
    """The booking exists but is not an active booking of the caller."""


class ProtectionWindowClosed(ReservationError):
    """Manual protection requested outside the configured window."""

    def __init__(self, message: str, days_until_open: int = 0):
        super().__init__(message)
        self.days_until_open = days_until_open


class ConflictOnWrite(ReservationError):
    """A claim insert lost a race on a unique index; retried once before surfacing."""
