"""Database coordination layer: engine, transactional sessions and claim retries."""

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from contextlib import contextmanager
from typing import Callable, Dict, TypeVar
import logging

from errors import ConflictOnWrite, ShiftUnavailable
from models import Base, Booking, BookingShift, Protection, Block

logger = logging.getLogger(__name__)

T = TypeVar('T')


def seat_month_lock_key(seat_number: int, month: int, year: int) -> int:
    """Advisory lock id shared by every claim on one seat for one month."""
    return (seat_number * 10000 + year) * 100 + month


class DatabaseManager:
    """Thread-safe façade over SQLAlchemy sessions and transactional flows."""

    def __init__(self, database_url: str, create_tables: bool = True):
        self.database_url = database_url
        self.engine = create_engine(database_url, **self._engine_options(database_url))
        self.session_factory = scoped_session(
            sessionmaker(bind=self.engine, expire_on_commit=False)
        )

        if create_tables:
            Base.metadata.create_all(self.engine)

    @staticmethod
    def _engine_options(database_url: str) -> Dict:
        if database_url.startswith('sqlite'):
            # Writers queue on the database lock instead of failing fast
            return {"connect_args": {"check_same_thread": False, "timeout": 30}}
        return {
            "pool_size": 20,
            "max_overflow": 40,
            "pool_pre_ping": True,  # Reconnect if connection lost
            "pool_recycle": 3600,   # Recycle connections after 1 hour
            "echo": False,
        }

    @contextmanager
    def get_session(self):
        """Provide a transactional scope, committing on success and rolling back otherwise."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error: {e}")
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def flush_claims(session, description: str) -> None:
        """Flush pending claim rows; a unique-index violation means a concurrent writer won."""
        try:
            session.flush()
        except IntegrityError as e:
            raise ConflictOnWrite(f"concurrent claim on {description}") from e

    @staticmethod
    def lock_seat_month(session, seat_number: int, month: int, year: int) -> None:
        """Serialize claims on one seat-month across all three ledgers until commit.

        Postgres only; SQLite holds a database-wide write lock already.
        """
        if session.get_bind().dialect.name != 'postgresql':
            return
        session.execute(text("SELECT pg_advisory_xact_lock(:key)"),
                        {"key": seat_month_lock_key(seat_number, month, year)})

    def run_claim(self, operation: Callable[..., T], description: str) -> T:
        """Run ``operation(session)`` in its own transaction, retrying once on a lost race.

        A second conflict is reported as ``ShiftUnavailable``; claims never retry indefinitely.
        """
        try:
            return self._attempt(operation, description)
        except ConflictOnWrite as first:
            logger.warning(f"Claim conflict on {description}, retrying once: {first}")

        try:
            return self._attempt(operation, description)
        except ConflictOnWrite as second:
            raise ShiftUnavailable(f"{description} was claimed concurrently") from second

    def _attempt(self, operation: Callable[..., T], description: str) -> T:
        with self.get_session() as session:
            try:
                return operation(session)
            except IntegrityError as e:
                # Autoflush can surface the violation before an explicit flush
                raise ConflictOnWrite(f"concurrent claim on {description}") from e

    def health_check(self) -> Dict:
        """Report database connectivity and ledger sizes; used by the /health endpoint."""
        try:
            with self.get_session() as session:
                session.execute(text("SELECT 1"))

                return {
                    "status": "healthy",
                    "database": "connected",
                    "bookings": session.query(Booking).count(),
                    "protections": session.query(Protection).count(),
                    "blocks": session.query(Block).count(),
                }
        except SQLAlchemyError as e:
            logger.error(f"Health check failed: {e}")
            return {
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e)
            }

    def reset_all(self) -> Dict[str, int]:
        """Clear every ledger; used by the stress script between runs."""
        with self.get_session() as session:
            cleared_claims = session.query(BookingShift).delete(synchronize_session=False)
            cleared_bookings = session.query(Booking).delete(synchronize_session=False)
            cleared_protections = session.query(Protection).delete(synchronize_session=False)
            cleared_blocks = session.query(Block).delete(synchronize_session=False)

            return {
                "booking_shifts_cleared": cleared_claims,
                "bookings_cleared": cleared_bookings,
                "protections_cleared": cleared_protections,
                "blocks_cleared": cleared_blocks,
            }

    def dispose(self) -> None:
        self.session_factory.remove()
        self.engine.dispose()
