# Overview: Request decorators for API routes (authentication and role checks).

from functools import wraps
from flask import request, jsonify, g

from .extensions import get_data_adapter
from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def _is_authenticated() -> bool:
    return getattr(g, 'current_user', None) is not None


def require_auth(f):
    """
    Require authentication and establish tenant context.

    Sets the following Flask g attributes:
    - g.current_user: the authenticated user record (no password hash)
    - g.store_id: the tenant (store) id from the session, may be None
    - g.session_context: the full SessionContext

    Returns 401 if the Authorization header is missing, or the token is
    invalid, expired or revoked.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token, get_data_adapter())
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.store_id = context.store_id
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_store(f):
    """Require the authenticated user to be bound to a store (tenant)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401
        if not getattr(g, 'store_id', None):
            return jsonify({"error": "No store is bound to this account"}), 403
        return f(*args, **kwargs)
    return decorated_function


def require_developer(f):
    """Require the authenticated user to be a developer (cross-tenant operator)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401
        if not g.current_user.get("is_developer"):
            return jsonify({"error": "Developer access required"}), 403
        return f(*args, **kwargs)
    return decorated_function


def require_role(*roles: str):
    """Require the authenticated user to hold one of `roles` (owner, admin, staff)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            role = g.current_user.get("role")
            if role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                    "message": f"Requires one of: {', '.join(roles)}"
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
