# Overview: Flask API routes for sales and bills; parses input and returns JSON responses.

"""
Sales and Bills API Routes

- POST /api/sales               sell one or more parts as a bill
- GET  /api/bills               search and page through bills
- GET  /api/bills/<id>          bill with items and refund history
- PUT  /api/bills/<id>          customer metadata only (admin)
- POST /api/bills/<id>/refund   full or partial refund (admin)
- GET  /api/bills/<id>/refunds  refund history, each refund with its own items
"""

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import CarPartsError, error_response
from ..roles import ADMIN
from ..services import refund_service, sales_service
from ..validation import parse_line_items, parse_optional_cents
from .common import int_arg, json_body, str_arg


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")
bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")


@sales_bp.post("")
@require_auth
def sell_route():
    """
    Request body:
    {
        "items": [{"part_id": 1, "quantity": 2, "unit_price_cents": 2500}],
        "customer_name": "John",
        "customer_phone": "555-0100",   (optional)
        "bill_number": "INV-9"          (optional, generated when omitted)
    }

    Returns:
        201: {"bill": {...}}
        400: Invalid input
        409: Insufficient stock (nothing persisted)
    """
    try:
        data = json_body()
        items = parse_line_items(data.get("items"))
        bill = sales_service.sell(
            items,
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            bill_number=data.get("bill_number"),
            actor=g.current_user,
        )
        return jsonify({"bill": bill.to_dict()}), 201
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process sale")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("")
@require_auth
def list_bills_route():
    try:
        bills, pagination = sales_service.list_bills(
            search=str_arg("search"),
            status=str_arg("status"),
            page=int_arg("page", minimum=1),
            per_page=int_arg("per_page", minimum=1),
        )
        payload = {"bills": [b.to_dict() for b in bills], "count": len(bills)}
        if pagination:
            payload["pagination"] = pagination
        return jsonify(payload), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list bills")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/<int:bill_id>")
@require_auth
def get_bill_route(bill_id: int):
    try:
        bill = sales_service.get_bill(bill_id)
        payload = bill.to_dict()
        payload["refunds"] = refund_service.get_refund_history(bill_id)
        return jsonify({"bill": payload}), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.put("/<int:bill_id>")
@require_auth
@require_role(ADMIN)
def update_bill_route(bill_id: int):
    """Request body: any of customer_name, customer_phone, bill_number."""
    try:
        bill = sales_service.update_bill_metadata(bill_id, json_body(), actor=g.current_user)
        return jsonify({"bill": bill.to_dict()}), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.post("/<int:bill_id>/refund")
@require_auth
@require_role(ADMIN)
def refund_bill_route(bill_id: int):
    """
    Request body:
    {
        "refund_type": "partial",             (full | partial)
        "refund_reason": "Wrong part",
        "refund_items": [{"part_id": 1, "quantity": 1, "unit_price_cents": 2000}],
        "refund_amount_cents": 2000           (optional cross-check)
    }

    Returns:
        201: {"refund": {...}, "bill": {...}}
        409: Over-refund or bill already refunded (nothing persisted)
    """
    try:
        data = json_body()
        refund_type = data.get("refund_type")
        items = None
        if data.get("refund_items"):
            items = parse_line_items(data.get("refund_items"), field="refund_items")
        record = refund_service.refund(
            bill_id,
            refund_type=refund_type,
            refund_reason=data.get("refund_reason"),
            items=items,
            refund_amount_cents=parse_optional_cents(data.get("refund_amount_cents"), "refund_amount_cents"),
            actor=g.current_user,
        )
        bill = sales_service.get_bill(bill_id)
        return jsonify({"refund": record.to_dict(), "bill": bill.to_dict()}), 201
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/<int:bill_id>/refunds")
@require_auth
def list_bill_refunds_route(bill_id: int):
    try:
        history = refund_service.get_refund_history(bill_id)
        return jsonify({"refunds": history, "count": len(history)}), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list refunds")
        return jsonify({"error": "Internal server error"}), 500
