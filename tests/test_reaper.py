import threading

from sqlalchemy import false

from availability import ShiftState
from models import Protection
from reaper import ProtectionExpiryReaper
from tests.conftest import local


def count_unresolved(db):
    with db.get_session() as session:
        return session.query(Protection).filter(Protection.converted_to_booking == false()).count()


def test_expired_protection_is_released_once(engine, db, clock):
    engine.book_shifts(12, 3, 2026, ["morning", "afternoon"], "U1", "P1")
    assert engine.release_expired_protections() == 0

    clock.set(local(2026, 4, 4, 0, 0))

    # Lapsed holds stop counting before the sweep runs
    assert engine.resolve(12, 4, 2026, "morning", requesting_user_id="U2").is_available

    assert engine.release_expired_protections() == 2
    assert engine.release_expired_protections() == 0
    assert count_unresolved(db) == 0
    assert engine.resolve(12, 4, 2026, "afternoon").is_available


def test_release_only_touches_lapsed_protections(engine, db, clock):
    engine.protect_shifts(4, [(3, 2026)], ["morning"], "U1")
    engine.protect_shifts(4, [(5, 2026)], ["morning"], "U1")
    clock.set(local(2026, 3, 4, 0, 0))

    assert engine.release_expired_protections() == 1
    assert engine.resolve(4, 5, 2026, "morning").state == ShiftState.PROTECTED

    # Releasing is one-way even if the clock is turned back
    clock.set(local(2026, 2, 10))
    assert engine.resolve(4, 3, 2026, "morning").is_available


def test_converted_protections_are_not_counted(engine, clock):
    engine.protect_shifts(4, [(4, 2026)], ["night"], "U1")
    engine.book_shifts(4, 4, 2026, ["night"], "U1", "P1")
    clock.set(local(2026, 4, 4, 0, 0))

    # Only the automatic May protection remains unresolved and it has not lapsed
    assert engine.release_expired_protections() == 0


def test_background_reaper_sweeps_and_stops(engine, db, clock):
    engine.protect_shifts(4, [(4, 2026)], ["night"], "U1")
    clock.set(local(2026, 4, 4, 0, 0))

    reaper = ProtectionExpiryReaper(db, clock, interval_seconds=0.05)
    swept = threading.Event()
    original = reaper.run_once

    def run_once():
        released = original()
        swept.set()
        return released

    reaper.run_once = run_once
    reaper.start()
    try:
        assert swept.wait(5)
        assert reaper.running
    finally:
        reaper.stop()

    assert not reaper.running
    assert count_unresolved(db) == 0


def test_engine_builds_reaper_from_settings(engine):
    reaper = engine.create_reaper()
    assert reaper.interval_seconds == engine.settings.reaper_interval_seconds
    assert reaper.run_once() == 0
