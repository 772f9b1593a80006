# Overview: Flask API routes for reservations; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth
from ..errors import CarPartsError, error_response
from ..services import reservation_service
from ..services.query_utils import MAX_PER_PAGE
from ..validation import optional_text, parse_line_items, parse_optional_cents
from .common import int_arg, json_body, str_arg


reservations_bp = Blueprint("reservations", __name__, url_prefix="/api/reservations")


@reservations_bp.get("")
@require_auth
def list_reservations_route():
    """Query params: status (reserved|completed|cancelled|active|all), page, per_page."""
    try:
        reservations, pagination = reservation_service.list_reservations(
            status=str_arg("status"),
            page=int_arg("page", 1, minimum=1),
            per_page=int_arg("per_page", minimum=1, maximum=MAX_PER_PAGE),
        )
        return jsonify({
            "reservations": [r.to_dict() for r in reservations],
            "pagination": pagination,
        }), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list reservations")
        return jsonify({"error": "Internal server error"}), 500


@reservations_bp.get("/<int:reservation_id>")
@require_auth
def get_reservation_route(reservation_id: int):
    try:
        reservation = reservation_service.get_reservation(reservation_id)
        return jsonify({"reservation": reservation.to_dict()}), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get reservation")
        return jsonify({"error": "Internal server error"}), 500


@reservations_bp.post("")
@require_auth
def create_reservation_route():
    """
    Request body:
    {
        "items": [{"part_id": 3, "quantity": 2, "unit_price_cents": 4000}],
        "customer_name": "Jane",
        "customer_phone": "555-0101",
        "deposit_amount_cents": 2000,   (optional)
        "notes": "Pick up Friday"       (optional)
    }
    """
    try:
        data = json_body()
        items = parse_line_items(data.get("items"))
        reservation = reservation_service.reserve(
            items,
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            deposit_amount_cents=parse_optional_cents(data.get("deposit_amount_cents"), "deposit_amount_cents"),
            notes=optional_text(data, "notes", max_length=2000),
            actor=g.current_user,
        )
        return jsonify({"reservation": reservation.to_dict()}), 201
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create reservation")
        return jsonify({"error": "Internal server error"}), 500


@reservations_bp.post("/<int:reservation_id>/complete")
@require_auth
def complete_reservation_route(reservation_id: int):
    """
    Request body (all optional):
    {
        "final_items": [{"part_id": 3, "quantity": 2, "unit_price_cents": 3800}],
        "bill_number": "INV-10"
    }
    """
    try:
        data = json_body()
        final_items = None
        if data.get("final_items"):
            final_items = parse_line_items(data.get("final_items"), field="final_items")
        bill = reservation_service.complete(
            reservation_id,
            final_items=final_items,
            bill_number=optional_text(data, "bill_number", max_length=64),
            actor=g.current_user,
        )
        reservation = reservation_service.get_reservation(reservation_id)
        return jsonify({"bill": bill.to_dict(), "reservation": reservation.to_dict()}), 201
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete reservation")
        return jsonify({"error": "Internal server error"}), 500


@reservations_bp.post("/<int:reservation_id>/cancel")
@require_auth
def cancel_reservation_route(reservation_id: int):
    try:
        reservation = reservation_service.cancel(reservation_id, actor=g.current_user)
        return jsonify({"reservation": reservation.to_dict()}), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel reservation")
        return jsonify({"error": "Internal server error"}), 500
