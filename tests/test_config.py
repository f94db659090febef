import pytest

from config import Settings, parse_window_days
from engine import SeatEngine
from protections import ProtectionManager
from tests.conftest import local


@pytest.mark.parametrize("raw, expected", [
    (None, 3),
    ("", None),
    ("any", None),
    ("None", None),
    ("5", 5),
    ("0", 0),
])
def test_parse_window_days(raw, expected):
    assert parse_window_days(raw) == expected


def test_negative_window_is_rejected():
    with pytest.raises(ValueError):
        parse_window_days("-1")


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///other.db")
    monkeypatch.setenv("TOTAL_SEATS", "12")
    monkeypatch.setenv("SEAT_TIMEZONE", "Asia/Kolkata")
    monkeypatch.setenv("PROTECTION_WINDOW_DAYS", "any")
    monkeypatch.setenv("REAPER_INTERVAL_SECONDS", "")

    settings = Settings.from_env()

    assert settings.database_url == "sqlite:///other.db"
    assert settings.total_seats == 12
    assert settings.timezone == "Asia/Kolkata"
    assert settings.protection_window_days is None
    assert settings.reaper_interval_seconds == 60
    assert settings.max_protection_months == 3


@pytest.mark.parametrize("day", [0, 29, 31, True])
def test_deadline_day_must_exist_in_every_month(day):
    with pytest.raises(ValueError):
        Settings(protection_deadline_day=day)


def test_deadline_day_from_environment_is_checked(monkeypatch):
    monkeypatch.setenv("PROTECTION_DEADLINE_DAY", "31")
    with pytest.raises(ValueError):
        Settings.from_env()


def test_protection_manager_rejects_unusable_deadline_day(engine):
    with pytest.raises(ValueError):
        ProtectionManager(engine.db, engine.clock, engine.resolver, deadline_day=30)


def test_latest_deadline_day_protects_february(db, clock):
    clock.set(local(2026, 1, 10))
    engine = SeatEngine(db, clock=clock,
                        settings=Settings(database_url="sqlite://", protection_deadline_day=28))

    result = engine.book_shifts(1, 1, 2026, ["morning"], "U1", "P1")

    assert result.auto_protected
    assert result.protections[0].expires_at == local(2026, 2, 28, 23, 59, 59)
