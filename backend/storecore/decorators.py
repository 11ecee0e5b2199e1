# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import session_service


def require_auth(f):
    """
    Require a bearer session.

    Sets g.current_user to the authenticated User. Returns 401 if the
    header is missing, the token is unknown, revoked or expired, or the
    user is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required", "code": "AUTH_REQUIRED"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        user = session_service.validate_session(token)
        if not user:
            return jsonify({"error": "Invalid or expired token", "code": "AUTH_REQUIRED"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Require an admin user. Must be applied AFTER @require_auth.

    Usage:
        @bp.post("/payouts/<int:payout_id>/resolve")
        @require_auth
        @require_admin
        def resolve(payout_id): ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, "current_user", None)
        if user is None:
            return jsonify({"error": "Authentication required", "code": "AUTH_REQUIRED"}), 401
        if not user.is_admin:
            return jsonify({"error": "Admin access required", "code": "PERMISSION_DENIED"}), 403
        return f(*args, **kwargs)

    return decorated_function
