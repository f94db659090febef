"""Release of lapsed protections, on demand or from a background sweep thread."""

import logging
import threading
from typing import Optional

from sqlalchemy import false
from sqlalchemy.exc import SQLAlchemyError

from models import Protection

logger = logging.getLogger(__name__)


def release_expired_protections(db, clock) -> int:
    """Resolve every unresolved protection whose deadline has passed.

    One conditional UPDATE: the transition is one-way, so racing with a booking's
    conversion step or another sweep is harmless. A second run returns 0.
    """
    now = clock.now()
    with db.get_session() as session:
        released = session.query(Protection).filter(
            Protection.converted_to_booking == false(),
            Protection.expires_at < now,
        ).update({Protection.converted_to_booking: True}, synchronize_session=False)

    if released > 0:
        logger.info(f"Released {released} expired protections")
    return released


class ProtectionExpiryReaper:
    """Periodically sweeps expired protections without blocking request threads."""

    def __init__(self, db, clock, interval_seconds: float = 60):
        self.db = db
        self.clock = clock
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> int:
        return release_expired_protections(self.db, self.clock)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except SQLAlchemyError as e:
                logger.error(f"Background reaper error: {e}")
            self._stop.wait(self.interval_seconds)
        logger.info("Reaper thread terminated gracefully.")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="protection-reaper", daemon=True)
        self._thread.start()

    def stop(self, *args, timeout: Optional[float] = 5) -> None:
        """Signal the sweep loop to finish; usable directly as a signal handler."""
        if self._thread is None:
            return
        if not self._stop.is_set():
            self._stop.set()
            logger.info("Stopping background reaper thread...")
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
