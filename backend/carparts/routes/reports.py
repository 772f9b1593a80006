# Overview: Flask API routes for sold stock reporting.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import CarPartsError, error_response
from ..roles import ADMIN, can_view_cost_price
from ..services import report_service
from .common import bool_arg, int_arg, str_arg


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/sold-stock")
@require_auth
@require_role(ADMIN)
def sold_stock_report_route():
    """
    Query params: start_date, end_date (YYYY-MM-DD, inclusive),
    local_purchase (true|false), container_no, limit (default 100, max 1000), offset.
    """
    try:
        report = report_service.sold_stock_report(
            start_date=str_arg("start_date"),
            end_date=str_arg("end_date"),
            local_purchase=bool_arg("local_purchase"),
            container_no=str_arg("container_no"),
            limit=int_arg("limit", 100, minimum=1, maximum=1000),
            offset=int_arg("offset", 0, minimum=0),
        )
        return jsonify(report), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build sold stock report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/sold-stock/summary")
@require_auth
@require_role(ADMIN)
def sold_stock_summary_route():
    """Same filters as /sold-stock plus top (default 10). Profit figures are superadmin only."""
    try:
        summary = report_service.sold_stock_summary(
            start_date=str_arg("start_date"),
            end_date=str_arg("end_date"),
            local_purchase=bool_arg("local_purchase"),
            container_no=str_arg("container_no"),
            include_cost=can_view_cost_price(g.current_user.role),
            top=int_arg("top", report_service.DEFAULT_TOP_PARTS, minimum=1, maximum=100),
        )
        return jsonify(summary), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build sold stock summary")
        return jsonify({"error": "Internal server error"}), 500
