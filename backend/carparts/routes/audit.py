# Overview: Flask API routes for the audit trail and stock movement journal.

from flask import Blueprint, jsonify, current_app

from ..decorators import require_auth, require_role
from ..errors import CarPartsError, error_response
from ..roles import ADMIN, SUPERADMIN
from ..services import audit_service, stock_ledger
from .common import int_arg, str_arg


audit_bp = Blueprint("audit", __name__, url_prefix="/api")


@audit_bp.get("/audit-logs")
@require_auth
@require_role(SUPERADMIN)
def list_audit_logs_route():
    """
    Query params: table_name, action, username (case-insensitive substring),
    limit (default 50, capped by AUDIT_LOG_MAX_LIMIT), offset.
    """
    try:
        max_limit = current_app.config["AUDIT_LOG_MAX_LIMIT"]
        limit = int_arg("limit", 50, minimum=1, maximum=max_limit)
        offset = int_arg("offset", 0, minimum=0)
        logs, total = audit_service.list_audit_logs(
            table_name=str_arg("table_name"),
            action=str_arg("action"),
            username=str_arg("username"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "logs": [entry.to_dict() for entry in logs],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list audit logs")
        return jsonify({"error": "Internal server error"}), 500


@audit_bp.get("/audit-logs/filters")
@require_auth
@require_role(SUPERADMIN)
def audit_log_filters_route():
    try:
        return jsonify(audit_service.get_filter_options()), 200
    except Exception:
        current_app.logger.exception("Failed to load audit log filters")
        return jsonify({"error": "Internal server error"}), 500


@audit_bp.get("/stock-movements")
@require_auth
@require_role(ADMIN)
def list_stock_movements_route():
    """Query params: part_id, reference_type, reference_id, limit (default 100, max 500)."""
    try:
        movements = stock_ledger.list_movements(
            part_id=int_arg("part_id"),
            reference_type=str_arg("reference_type"),
            reference_id=int_arg("reference_id"),
            limit=int_arg("limit", 100, minimum=1, maximum=500),
        )
        return jsonify({
            "movements": [m.to_dict() for m in movements],
            "count": len(movements),
        }), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500
