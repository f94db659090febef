import pytest

from tests.conftest import local

ADMIN = {"X-User-Id": "admin-1"}


def book(client, **overrides):
    payload = {
        "seat_number": 12,
        "month": 3,
        "year": 2026,
        "shift_types": ["morning", "afternoon"],
        "user_id": "U1",
        "payment_ref": "P1",
    }
    payload.update(overrides)
    return client.post("/bookings", json=payload)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "healthy"
    assert body["bookings"] == 0


def test_booking_flow(client):
    response = book(client)
    assert response.status_code == 201
    body = response.get_json()
    assert body["booking"]["shift_types"] == ["morning", "afternoon"]
    assert body["auto_protected"] is True
    assert body["protected_month_label"] == "April 2026"

    conflict = book(client, user_id="U2", payment_ref="P2", shift_types=["afternoon"])
    assert conflict.status_code == 409
    assert conflict.get_json()["shifts"] == [
        {"seat_number": 12, "month": 3, "year": 2026, "shift_type": "afternoon"}
    ]


@pytest.mark.parametrize("overrides", [
    {"month": 13},
    {"month": "March"},
    {"month": True},
    {"shift_types": []},
    {"shift_types": ["evening"]},
    {"payment_ref": ""},
    {"seat_number": 0},
])
def test_invalid_bookings_are_bad_requests(client, overrides):
    response = book(client, **overrides)
    assert response.status_code == 400
    assert "error" in response.get_json()


def test_booking_requires_json_object(client):
    response = client.post("/bookings", data="not json", content_type="text/plain")
    assert response.status_code == 400


def test_cancel_booking(client):
    booking_id = book(client).get_json()["booking"]["id"]

    response = client.post(f"/bookings/{booking_id}/cancel")
    assert response.status_code == 200
    assert response.get_json()["status"] == "cancelled"

    assert client.post(f"/bookings/{booking_id}/cancel").status_code == 200
    assert client.post("/bookings/unknown/cancel").status_code == 404


def test_availability_endpoint(client):
    book(client)

    response = client.get("/availability", query_string={
        "seat_number": 12, "month": 4, "year": 2026, "shift_types": "morning,night",
    })
    body = response.get_json()
    assert response.status_code == 200
    assert body["available"] is False
    assert [s["state"] for s in body["shifts"]] == ["protected", "available"]
    assert body["shifts"][0]["holder_id"] == "U1"

    own = client.get("/availability", query_string={
        "seat_number": 12, "month": 4, "year": 2026, "shift_types": "morning", "user_id": "U1",
    }).get_json()
    assert own["available"] is True


def test_month_grid_and_seat_details(client):
    book(client)

    grid = client.get("/monthly-booking/seats", query_string={"month": 3, "year": 2026}).get_json()
    assert grid["total_seats"] == 59
    seat = next(s for s in grid["seats"] if s["seat_number"] == 12)
    assert [s["status"] for s in seat["shifts"]] == ["booked", "booked", "available"]

    details = client.get("/monthly-booking/seat/12", query_string={"month": 4, "year": 2026})
    assert details.status_code == 200
    shifts = details.get_json()["shifts"]
    assert shifts[0]["protected_for_user"] == "U1"
    assert shifts[0]["protection_expires_at"] == "2026-04-03T23:59:59+05:30"

    missing = client.get("/monthly-booking/seats", query_string={"month": 3})
    assert missing.status_code == 400


def test_months_listing(client):
    months = client.get("/monthly-booking/months").get_json()["months"]
    assert months[0] == {"month": 2, "year": 2026, "label": "February 2026", "is_current": True}


def test_my_bookings_requires_identity(client):
    book(client)

    assert client.get("/monthly-booking/my-bookings").status_code == 401

    mine = client.get("/monthly-booking/my-bookings", headers={"X-User-Id": "U1"}).get_json()
    assert mine["total_bookings"] == 1
    theirs = client.get("/monthly-booking/my-bookings", headers={"X-User-Id": "U2"}).get_json()
    assert theirs["total_bookings"] == 0


def test_protect_from_booking_endpoint(client):
    booking_id = book(client).get_json()["booking"]["id"]
    headers = {"X-User-Id": "U1"}

    status = client.get(f"/monthly-booking/protection-status/{booking_id}", headers=headers)
    assert status.status_code == 200
    assert status.get_json()["can_protect"] is True

    foreign = client.get(f"/monthly-booking/protection-status/{booking_id}",
                         headers={"X-User-Id": "U2"})
    assert foreign.status_code == 403

    response = client.post("/monthly-booking/protect", headers=headers, json={
        "booking_id": booking_id,
        "months": [{"month": 5, "year": 2026}, {"month": 6, "year": 2026}],
    })
    assert response.status_code == 201
    assert len(response.get_json()["protections"]) == 4

    too_many = client.post("/monthly-booking/protect", headers=headers, json={
        "booking_id": booking_id,
        "months": [{"month": m, "year": 2026} for m in (4, 5, 6, 7)],
    })
    assert too_many.status_code == 400


def test_protect_outside_window_reports_wait(windowed_engine):
    from app import create_app

    client = create_app(windowed_engine).test_client()
    booking_id = book(client).get_json()["booking"]["id"]

    response = client.post("/monthly-booking/protect", headers={"X-User-Id": "U1"}, json={
        "booking_id": booking_id,
        "months": [{"month": 5, "year": 2026}],
    })
    assert response.status_code == 400
    assert response.get_json()["days_until_open"] == 15


def test_admin_block_and_unblock(client):
    headers = {"X-User-Id": "admin-1"}
    block = {"seat_number": 5, "month": 6, "year": 2026, "shift_types": ["night"]}

    assert client.post("/admin/blocks", json=block).status_code == 401

    response = client.post("/admin/blocks", headers=headers, json=block)
    assert response.status_code == 201
    assert response.get_json()["blocks"][0]["blocked_by"] == "admin-1"

    blocked = book(client, seat_number=5, month=6, shift_types=["night"])
    assert blocked.status_code == 409

    assert client.post("/admin/unblock", json=block).status_code == 401
    lifted = client.post("/admin/unblock", headers=headers, json=block)
    assert lifted.get_json() == {"unblocked": 1}
    assert book(client, seat_number=5, month=6, shift_types=["night"]).status_code == 201

    booked = client.post("/admin/blocks", headers=headers, json=block)
    assert booked.status_code == 409
    assert booked.get_json()["type"] == "ShiftAlreadyBooked"


def test_release_expired_endpoint(client, clock):
    book(client)
    clock.set(local(2026, 4, 5))

    assert client.post("/monthly-booking/release-expired").status_code == 401

    assert client.post("/monthly-booking/release-expired", headers=ADMIN).get_json() == {"released": 2}
    assert client.post("/monthly-booking/release-expired", headers=ADMIN).get_json() == {"released": 0}


def test_reset_clears_ledgers(client):
    book(client)

    assert client.post("/admin/reset").status_code == 401
    body = client.post("/admin/reset", headers=ADMIN).get_json()
    assert body["bookings_cleared"] == 1
    assert client.get("/health").get_json()["bookings"] == 0


@pytest.mark.parametrize("shift_types", ["", ",", "morning,morning", "evening"])
def test_availability_rejects_bad_shift_lists(client, shift_types):
    response = client.get("/availability", query_string={
        "seat_number": 1, "month": 3, "year": 2026, "shift_types": shift_types,
    })
    assert response.status_code == 400
    assert "available" not in response.get_json()
