"""ORM model definitions for the booking, protection and block ledgers."""

from sqlalchemy import (Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer,
                        String, TypeDecorator, Uuid, false, true)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone
import enum
import uuid
from typing import Optional

from shifts import ShiftKey, ShiftType, SHIFT_ORDER

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Store aware datetimes as naive UTC and hand them back tagged as UTC.

    Keeps comparisons consistent on backends without timezone support (SQLite).
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetimes are not accepted")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def _utcnow():
    return datetime.now(timezone.utc)


class BookingStatus(str, enum.Enum):
    """Booking lifecycle; bookings are never deleted, only cancelled."""
    ACTIVE = 'active'
    CANCELLED = 'cancelled'


shift_type_enum = Enum(ShiftType, name='shift_type_enum',
                       values_callable=lambda e: [m.value for m in e])


class Booking(Base):
    __tablename__ = 'bookings'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    seat_number = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    user_id = Column(String, nullable=False)
    payment_ref = Column(String, nullable=False)
    status = Column(Enum(BookingStatus, name='booking_status_enum',
                         values_callable=lambda e: [m.value for m in e]),
                    default=BookingStatus.ACTIVE, nullable=False)
    booked_at = Column(UTCDateTime, default=_utcnow, nullable=False)

    shifts = relationship('BookingShift', back_populates='booking', lazy='selectin',
                          cascade='all, delete-orphan')

    __table_args__ = (
        Index('idx_bookings_seat_month', 'seat_number', 'year', 'month'),
        Index('idx_bookings_user', 'user_id'),
        Index('idx_bookings_payment', 'payment_ref'),
    )

    @property
    def shift_types(self):
        present = {s.shift_type for s in self.shifts}
        return [s for s in SHIFT_ORDER if s in present]

    @property
    def is_active(self) -> bool:
        return self.status == BookingStatus.ACTIVE

    def to_dict(self):
        return {
            "id": str(self.id),
            "seat_number": self.seat_number,
            "month": self.month,
            "year": self.year,
            "shift_types": [s.value for s in self.shift_types],
            "user_id": self.user_id,
            "payment_ref": self.payment_ref,
            "status": self.status.value,
            "booked_at": self.booked_at.isoformat() if self.booked_at else None,
        }


class BookingShift(Base):
    """Claim row: one per shift of a booking, carrying the uniqueness guarantee."""
    __tablename__ = 'booking_shifts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Uuid, ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False)
    seat_number = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    shift_type = Column(shift_type_enum, nullable=False)
    user_id = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    booking = relationship('Booking', back_populates='shifts')

    __table_args__ = (
        # At most one active booking may contain a given shift key
        Index('uq_booking_shifts_active_key', 'seat_number', 'month', 'year', 'shift_type',
              unique=True,
              postgresql_where=is_active == true(),
              sqlite_where=is_active == true()),
        Index('idx_booking_shifts_booking', 'booking_id'),
    )

    @property
    def key(self) -> ShiftKey:
        return ShiftKey(self.seat_number, self.month, self.year, self.shift_type)


class Protection(Base):
    """A time-boxed hold of one shift key for one user.

    ``converted_to_booking`` is the single terminal flag: it is set when the holder
    books the shift and also when the reaper resolves an expired hold.
    """
    __tablename__ = 'protections'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    seat_number = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    shift_type = Column(shift_type_enum, nullable=False)
    user_id = Column(String, nullable=False)
    protected_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    converted_to_booking = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index('uq_protections_unresolved_key', 'seat_number', 'month', 'year', 'shift_type',
              unique=True,
              postgresql_where=converted_to_booking == false(),
              sqlite_where=converted_to_booking == false()),
        Index('idx_protections_expires', 'expires_at',
              postgresql_where=converted_to_booking == false()),
        Index('idx_protections_user', 'user_id'),
    )

    @property
    def key(self) -> ShiftKey:
        return ShiftKey(self.seat_number, self.month, self.year, self.shift_type)

    def is_live(self, now: datetime) -> bool:
        return not self.converted_to_booking and self.expires_at > now

    def to_dict(self):
        return {
            "id": str(self.id),
            "seat_number": self.seat_number,
            "month": self.month,
            "year": self.year,
            "shift_type": self.shift_type.value,
            "user_id": self.user_id,
            "protected_at": self.protected_at.isoformat() if self.protected_at else None,
            "expires_at": self.expires_at.isoformat(),
            "converted_to_booking": self.converted_to_booking,
        }


class Block(Base):
    """Administrative veto over one shift key."""
    __tablename__ = 'blocks'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    seat_number = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    shift_type = Column(shift_type_enum, nullable=False)
    blocked_by = Column(String, nullable=False)
    blocked_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    is_blocked = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index('uq_blocks_live_key', 'seat_number', 'month', 'year', 'shift_type',
              unique=True,
              postgresql_where=is_blocked == true(),
              sqlite_where=is_blocked == true()),
        Index('idx_blocks_key', 'seat_number', 'year', 'month'),
    )

    @property
    def key(self) -> ShiftKey:
        return ShiftKey(self.seat_number, self.month, self.year, self.shift_type)

    def to_dict(self):
        return {
            "id": str(self.id),
            "seat_number": self.seat_number,
            "month": self.month,
            "year": self.year,
            "shift_type": self.shift_type.value,
            "blocked_by": self.blocked_by,
            "blocked_at": self.blocked_at.isoformat() if self.blocked_at else None,
            "is_blocked": self.is_blocked,
        }


def find_booking(session, booking_id) -> Optional[Booking]:
    """Look a booking up by id, treating malformed ids as missing."""
    if not isinstance(booking_id, uuid.UUID):
        try:
            booking_id = uuid.UUID(str(booking_id))
        except ValueError:
            return None
    return session.get(Booking, booking_id)
