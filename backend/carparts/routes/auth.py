# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Public sign-up creates general users; an authenticated admin may create
  more privileged accounts through the same endpoint
- Opaque bearer tokens; see session_service
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import optional_auth, require_auth
from ..errors import CarPartsError, error_response
from ..services import auth_service, session_service, user_service
from .common import json_body


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
@optional_auth
def register_route():
    """
    Request body: {"username": "...", "password": "...", "role": "admin"}

    role is honoured only for an authenticated admin/superadmin caller.
    """
    try:
        data = json_body()
        user = user_service.register_user(
            data.get("username"),
            data.get("password"),
            role=data.get("role"),
            actor=g.current_user,
        )
        return jsonify({"user": user.to_dict()}), 201
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Registration failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """Returns {token, role, username, user}; send the token as `Authorization: Bearer <token>`."""
    try:
        data = json_body()
        username = data.get("username")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            current_app.logger.info("Failed login for %s from %s", username, request.remote_addr)
            return jsonify({"error": "Invalid credentials"}), 401

        _, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "token": token,
            "role": user.role,
            "username": user.username,
            "user": user.to_dict(),
        }), 200
    except CarPartsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.session_token, reason="User logout")
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        current_app.logger.exception("Logout failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200
