# Overview: Flask API routes for user administration; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import CarPartsError, error_response
from ..roles import ADMIN
from ..services import user_service
from .common import json_body


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_role(ADMIN)
def list_users_route():
    """Admins do not see superadmin accounts."""
    try:
        users = user_service.list_users(actor=g.current_user)
        return jsonify({"users": [u.to_dict() for u in users], "count": len(users)}), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list users")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.patch("/<int:user_id>/role")
@require_auth
@require_role(ADMIN)
def change_role_route(user_id: int):
    """Request body: {"role": "admin"}"""
    try:
        user = user_service.change_role(user_id, json_body().get("role"), actor=g.current_user)
        return jsonify({"user": user.to_dict()}), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change user role")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/<int:user_id>/deactivate")
@require_auth
@require_role(ADMIN)
def deactivate_user_route(user_id: int):
    try:
        user = user_service.deactivate_user(user_id, actor=g.current_user)
        return jsonify({"user": user.to_dict()}), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/<int:user_id>/reactivate")
@require_auth
@require_role(ADMIN)
def reactivate_user_route(user_id: int):
    try:
        user = user_service.reactivate_user(user_id, actor=g.current_user)
        return jsonify({"user": user.to_dict()}), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reactivate user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.delete("/<int:user_id>")
@require_auth
@require_role(ADMIN)
def delete_user_route(user_id: int):
    """409 when the user has recorded activity; deactivate instead."""
    try:
        user_service.delete_user(user_id, actor=g.current_user)
        return jsonify({"message": "User deleted", "user_id": user_id}), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete user")
        return jsonify({"error": "Internal server error"}), 500
