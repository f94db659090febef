"""Shared fixtures: a SQLite ledger per test and a manually driven clock."""

from datetime import datetime, timedelta, timezone

import pytest

from app import create_app
from clock import FixedClock
from config import Settings
from database_manager import DatabaseManager
from engine import SeatEngine

# Fixed offset stands in for a local timezone without needing tzdata
LOCAL_TZ = timezone(timedelta(hours=5, minutes=30))


def local(year, month, day, hour=0, minute=0, second=0):
    return datetime(year, month, day, hour, minute, second, tzinfo=LOCAL_TZ)


@pytest.fixture
def clock():
    return FixedClock(local(2026, 2, 10, 12, 0))


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'seat_shifts.db'}")
    try:
        yield manager
    finally:
        manager.dispose()


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", total_seats=59, protection_window_days=None)


@pytest.fixture
def engine(db, clock, settings):
    return SeatEngine(db, clock=clock, settings=settings)


@pytest.fixture
def windowed_engine(db, clock):
    """Engine whose manual protection only opens in the last 3 days of a month."""
    return SeatEngine(db, clock=clock,
                      settings=Settings(database_url="sqlite://", total_seats=59,
                                        protection_window_days=3))


@pytest.fixture
def client(engine):
    app = create_app(engine)
    app.config["TESTING"] = True
    return app.test_client()
