# Overview: Flask API routes for parts; parses input and returns JSON responses.

"""
Parts API Routes

- Any authenticated user registers, lists and quick-sells parts
- Admins edit parts; cost_price_cents is visible and writable for superadmins only
"""

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import CarPartsError, error_response
from ..roles import ADMIN
from ..services import parts_service, sales_service
from ..services.parts_service import serialize_part
from ..validation import parse_optional_cents
from .common import int_arg, json_body, str_arg


parts_bp = Blueprint("parts", __name__, url_prefix="/api/parts")


@parts_bp.get("")
@require_auth
def list_parts_route():
    """
    Query params: search, provenance (container|local), container_no, page, per_page.
    Without page every part is returned.
    """
    try:
        parts, pagination = parts_service.list_parts(
            search=str_arg("search"),
            provenance=str_arg("provenance"),
            container_no=str_arg("container_no"),
            page=int_arg("page", minimum=1),
            per_page=int_arg("per_page", minimum=1),
        )
        payload = {
            "parts": [serialize_part(p, g.current_user) for p in parts],
            "count": len(parts),
        }
        if pagination:
            payload["pagination"] = pagination
        return jsonify(payload), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list parts")
        return jsonify({"error": "Internal server error"}), 500


@parts_bp.get("/available")
@require_auth
def list_available_parts_route():
    try:
        parts = parts_service.list_available_parts()
        return jsonify({
            "parts": [serialize_part(p, g.current_user) for p in parts],
            "count": len(parts),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list available parts")
        return jsonify({"error": "Internal server error"}), 500


@parts_bp.get("/<int:part_id>")
@require_auth
def get_part_route(part_id: int):
    try:
        part = parts_service.get_part(part_id)
        return jsonify({"part": serialize_part(part, g.current_user)}), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get part")
        return jsonify({"error": "Internal server error"}), 500


@parts_bp.post("")
@require_auth
def create_part_route():
    """
    Register a part.

    Request body:
    {
        "name": "Brake pad",
        "manufacturer": "Bosch",
        "part_number": "BP-100",        (optional, unique)
        "total_stock": 4,               (optional, default 1)
        "recommended_price_cents": 2500,
        "cost_price_cents": 1800,       (superadmin only)
        "container_no": "CN-42",        (optional)
        "local_purchase": false,
        "parent_id": 7,                 (optional)
        "available_from": "2024-05-01"  (optional)
    }
    """
    try:
        part = parts_service.create_part(json_body(), actor=g.current_user)
        return jsonify({"part": serialize_part(part, g.current_user)}), 201
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create part")
        return jsonify({"error": "Internal server error"}), 500


@parts_bp.patch("/<int:part_id>")
@require_auth
@require_role(ADMIN)
def update_part_route(part_id: int):
    try:
        part = parts_service.update_part(part_id, json_body(), actor=g.current_user)
        return jsonify({"part": serialize_part(part, g.current_user)}), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update part")
        return jsonify({"error": "Internal server error"}), 500


@parts_bp.patch("/<int:part_id>/sell")
@require_auth
def quick_sell_route(part_id: int):
    """
    Sell a single unit to the walk-in customer.

    Request body: {"sold_price_cents": 2500}  (optional, defaults to the recommended price)
    Returns the updated part and the bill created for the sale.
    """
    try:
        data = json_body()
        sold_price = parse_optional_cents(data.get("sold_price_cents"), "sold_price_cents")
        part, bill = sales_service.quick_sell(part_id, sold_price_cents=sold_price, actor=g.current_user)
        return jsonify({
            "part": serialize_part(part, g.current_user),
            "bill": bill.to_dict(),
        }), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to sell part")
        return jsonify({"error": "Internal server error"}), 500
