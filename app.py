"""HTTP entrypoint for the seat-shift reservation engine."""

from flask import Flask, request, jsonify
from flask_cors import CORS
import logging
import signal
import atexit
from typing import Any, Dict, List, Optional, Tuple

from config import Settings
from engine import SeatEngine
from errors import (InvalidInput, NotBookingOwner, NotFound, ProtectionWindowClosed,
                    ReservationError, ShiftAlreadyBooked, ShiftUnavailable)
from shifts import validate_shift_types

logger = logging.getLogger(__name__)


def bad_request(message: str, *, details: Optional[Dict[str, Any]] = None):
    """Return a uniform 400 payload, optionally including field-level details."""
    payload: Dict[str, Any] = {"error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), 400


def require_json_object() -> Tuple[Optional[Dict[str, Any]], Optional[Tuple[str, int]]]:
    """Ensure the request body is a JSON object before proceeding."""
    if not request.is_json:
        return None, bad_request("request body must be a JSON object")

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, bad_request("request body must be a JSON object")

    return data, None


def require_int(data: Dict[str, Any], name: str) -> Tuple[Optional[int], Optional[Tuple[str, int]]]:
    """Accept integers or digit strings; booleans masquerading as ints are rejected."""
    value = data.get(name)
    if isinstance(value, bool):
        return None, bad_request(f"{name} must be an integer")
    if isinstance(value, int):
        return value, None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()), None
    return None, bad_request(f"{name} must be an integer")


def require_month_year(data: Dict[str, Any]) -> Tuple[Optional[Tuple[int, int]], Optional[Tuple[str, int]]]:
    month, error = require_int(data, "month")
    if error:
        return None, error
    year, error = require_int(data, "year")
    if error:
        return None, error
    return (month, year), None


def shift_types_arg(raw: Any) -> List[str]:
    """Shift types arrive as a JSON list or a comma-separated query string."""
    if isinstance(raw, str):
        return [part for part in (p.strip() for p in raw.split(",")) if part]
    return raw


def caller_id() -> Optional[str]:
    """Caller identity as forwarded by the authentication middleware."""
    user_id = request.headers.get("X-User-Id", "").strip()
    return user_id or None


def unauthorized():
    return jsonify({"error": "missing caller identity"}), 401


def error_status(error: ReservationError) -> int:
    if isinstance(error, NotFound):
        return 404
    if isinstance(error, NotBookingOwner):
        return 403
    if isinstance(error, (ShiftUnavailable, ShiftAlreadyBooked)):
        return 409
    if isinstance(error, (InvalidInput, ProtectionWindowClosed)):
        return 400
    return 500


def error_payload(error: ReservationError) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"error": str(error), "type": type(error).__name__}
    keys = getattr(error, "keys", None)
    if keys:
        payload["shifts"] = [
            {"seat_number": k.seat_number, "month": k.month, "year": k.year,
             "shift_type": k.shift_type.value}
            for k in keys
        ]
    if isinstance(error, ProtectionWindowClosed):
        payload["days_until_open"] = error.days_until_open
    return payload


def create_app(engine: SeatEngine) -> Flask:
    """Build the Flask application around an already wired engine."""
    app = Flask(__name__)
    CORS(app)
    app.config["ENGINE"] = engine

    @app.errorhandler(ReservationError)
    def handle_reservation_error(error: ReservationError):
        status = error_status(error)
        if status >= 500:
            logger.error(f"Unhandled engine error: {error}")
        return jsonify(error_payload(error)), status

    @app.route('/health', methods=['GET'])
    def health_check():
        """Expose the database connectivity and ledger sizes."""
        return jsonify(engine.db.health_check())

    @app.route('/monthly-booking/months', methods=['GET'])
    def available_months():
        return jsonify({"months": engine.available_months()})

    @app.route('/monthly-booking/seats', methods=['GET'])
    def seats_for_month():
        """Every seat of a month with the resolved status of each shift."""
        month_year, error_response = require_month_year(request.args)
        if error_response:
            return error_response
        month, year = month_year

        seats = engine.get_seats_for_month(month, year)
        return jsonify({
            "month": month,
            "year": year,
            "total_seats": len(seats),
            "seats": [s.to_dict(engine.tz) for s in seats],
        })

    @app.route('/monthly-booking/seat/<int:seat_number>', methods=['GET'])
    def seat_details(seat_number):
        month_year, error_response = require_month_year(request.args)
        if error_response:
            return error_response

        container = engine.get_seat_details(seat_number, *month_year)
        return jsonify(container.to_dict(engine.tz))

    @app.route('/monthly-booking/my-bookings', methods=['GET'])
    def my_bookings():
        user_id = caller_id()
        if not user_id:
            return unauthorized()

        include_cancelled = request.args.get("include_cancelled", "").lower() in {"1", "true", "yes"}
        bookings = engine.list_user_bookings(user_id, include_cancelled=include_cancelled)
        return jsonify({
            "total_bookings": len(bookings),
            "bookings": [b.to_dict() for b in bookings],
        })

    @app.route('/monthly-booking/protection-status/<booking_id>', methods=['GET'])
    def protection_status(booking_id):
        user_id = caller_id()
        if not user_id:
            return unauthorized()
        return jsonify(engine.protection_status(booking_id, user_id).to_dict())

    @app.route('/monthly-booking/protect', methods=['POST'])
    def protect_seat():
        """Extend one of the caller's bookings into up to three later months."""
        user_id = caller_id()
        if not user_id:
            return unauthorized()

        data, error_response = require_json_object()
        if error_response:
            return error_response

        booking_id = data.get("booking_id")
        if not isinstance(booking_id, str) or not booking_id.strip():
            return bad_request("booking_id must be a non-empty string")

        months_raw = data.get("months")
        if not isinstance(months_raw, list) or not months_raw:
            return bad_request("months must be a non-empty JSON array")

        target_months = []
        for index, entry in enumerate(months_raw):
            if not isinstance(entry, dict):
                return bad_request("each month must be an object", details={"index": index})
            month_year, error_response = require_month_year(entry)
            if error_response:
                return error_response
            target_months.append(month_year)

        protections = engine.protect_from_booking(booking_id.strip(), user_id, target_months)
        logger.info(f"Protection created for booking {booking_id} by {user_id}")
        return jsonify({
            "protections": [p.to_dict() for p in protections],
            "months": [{"month": m, "year": y} for m, y in target_months],
        }), 201

    @app.route('/monthly-booking/release-expired', methods=['POST'])
    def release_expired():
        if not caller_id():
            return unauthorized()
        released = engine.release_expired_protections()
        return jsonify({"released": released}), 200

    @app.route('/availability', methods=['GET'])
    def availability():
        """Resolve the requested shifts of one seat, optionally for a given requester."""
        seat_number, error_response = require_int(request.args, "seat_number")
        if error_response:
            return error_response
        month_year, error_response = require_month_year(request.args)
        if error_response:
            return error_response
        month, year = month_year

        shift_types = validate_shift_types(
            shift_types_arg(request.args.get("shift_types", "morning,afternoon,night"))
        )
        requester = request.args.get("user_id") or None

        shifts = []
        for shift_type in shift_types:
            resolution = engine.resolve(seat_number, month, year, shift_type, requester)
            shifts.append({
                "shift_type": shift_type.value,
                "state": resolution.state.value,
                "holder_id": resolution.holder_id,
                "expires_at": resolution.expires_at.isoformat() if resolution.expires_at else None,
            })

        return jsonify({
            "seat_number": seat_number,
            "month": month,
            "year": year,
            "available": all(s["state"] == "available" for s in shifts),
            "shifts": shifts,
        })

    @app.route('/bookings', methods=['POST'])
    def book_shifts():
        """Record a booking once the payment collaborator confirmed the transaction."""
        data, error_response = require_json_object()
        if error_response:
            return error_response

        seat_number, error_response = require_int(data, "seat_number")
        if error_response:
            return error_response
        month_year, error_response = require_month_year(data)
        if error_response:
            return error_response

        result = engine.book_shifts(
            seat_number, *month_year,
            shift_types_arg(data.get("shift_types")),
            data.get("user_id"),
            data.get("payment_ref"),
        )
        return jsonify(result.to_dict()), 201

    @app.route('/bookings/<booking_id>/cancel', methods=['POST'])
    def cancel_booking(booking_id):
        booking = engine.cancel_booking(booking_id)
        return jsonify(booking.to_dict()), 200

    @app.route('/admin/blocks', methods=['POST'])
    def block_shifts():
        admin_id = caller_id()
        if not admin_id:
            return unauthorized()

        data, error_response = require_json_object()
        if error_response:
            return error_response

        seat_number, error_response = require_int(data, "seat_number")
        if error_response:
            return error_response
        month_year, error_response = require_month_year(data)
        if error_response:
            return error_response

        blocks = engine.block_shifts(seat_number, *month_year,
                                     shift_types_arg(data.get("shift_types")), admin_id)
        return jsonify({"blocks": [b.to_dict() for b in blocks]}), 201

    @app.route('/admin/unblock', methods=['POST'])
    def unblock_shifts():
        if not caller_id():
            return unauthorized()

        data, error_response = require_json_object()
        if error_response:
            return error_response

        seat_number, error_response = require_int(data, "seat_number")
        if error_response:
            return error_response
        month_year, error_response = require_month_year(data)
        if error_response:
            return error_response

        lifted = engine.unblock_shifts(seat_number, *month_year,
                                       shift_types_arg(data.get("shift_types")))
        return jsonify({"unblocked": lifted}), 200

    @app.route('/admin/reset', methods=['POST'])
    def reset_all():
        """Administrative endpoint to clear every ledger; used by the stress script."""
        if not caller_id():
            return unauthorized()
        return jsonify({"message": "all ledgers reset", **engine.db.reset_all()}), 200

    return app


def main() -> None:
    logging.basicConfig(level=logging.INFO)

    settings = Settings.from_env()
    engine = SeatEngine.from_settings(settings)
    app = create_app(engine)

    # Sweep expired protections in a daemon so it never blocks HTTP traffic
    reaper = engine.create_reaper()
    reaper.start()

    def shutdown(*args):
        reaper.stop()
        raise SystemExit(0)

    # Register signal handlers for production (Gunicorn, Docker, etc.)
    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    # Fallback for local runs
    atexit.register(reaper.stop)

    if settings.protection_window_days is None:
        window = "any time"
    else:
        window = f"last {settings.protection_window_days} days of the month"

    logger.info(f"""
    ================================
    SEAT-SHIFT RESERVATION ENGINE
    ================================
    Seats: {settings.total_seats} x 3 shifts per month
    Database: {engine.db.engine.url.get_backend_name()}
    Protection window: {window}
    ================================
    """)

    app.run(host="0.0.0.0", port=settings.port, debug=False, threaded=True)


if __name__ == '__main__':
    main()
