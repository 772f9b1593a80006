# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .roles import has_at_least
from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid session; sets g.current_user.

    Returns 401 if the header is missing, the token is invalid, expired or
    revoked, or the user account is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def optional_auth(f):
    """Like require_auth, but anonymous requests pass with g.current_user = None."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.current_user = None
        token = _bearer_token()
        if token:
            user = session_service.validate_session(token)
            if not user:
                return jsonify({"error": "Invalid or expired token"}), 401
            g.current_user = user
            g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_role(minimum: str):
    """Require the authenticated user to rank at or above `minimum`. Use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401

            if not has_at_least(user.role, minimum):
                return jsonify({
                    "error": "Permission denied",
                    "code": "permission_denied",
                    "required_role": minimum,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
