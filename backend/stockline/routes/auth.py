# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/stockline/routes/auth.py
"""
Authentication API routes

- POST /register: new store + owner + trial subscription (queued locally,
  pushed by the sync manager)
- POST /login, POST /logout: bearer session tokens
- GET /me: current user with store, subscription and plan
- POST /check-user: does an account exist for this email/username
- POST /cleanup-user: remove an account and the store it owns
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_role
from ..extensions import get_data_adapter, get_sync_manager
from ..models.auth import public_user
from ..services import auth_service
from ..services import session_service
from ..services import subscription_service
from ..storage.schema_mapping import to_canonical
from ..validation import ValidationError, ConflictError


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
def register_route():
    """
    Register a new store and its owner.

    Body: username, email, password, store_name, store_address, store_phone,
    store_email, subscription_tier (camelCase keys are accepted).
    """
    data = to_canonical(request.get_json(silent=True) or {})
    adapter = get_data_adapter()

    try:
        result = auth_service.register_user(
            adapter,
            username=data.get("username"),
            email=data.get("email"),
            password=data.get("password"),
            store_name=data.get("store_name"),
            store_address=data.get("store_address"),
            store_phone=data.get("store_phone"),
            store_email=data.get("store_email"),
            subscription_tier=data.get("subscription_tier") or "free",
            trial_days=current_app.config["TRIAL_DAYS"],
        )
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Something went wrong"}), 500

    # Best effort: push the new account now instead of waiting for the next interval.
    try:
        get_sync_manager().sync_now()
    except Exception:
        current_app.logger.exception("Post-registration sync failed")

    return jsonify({
        "user": public_user(result["user"]),
        "store": result["store"],
        "subscription": result["subscription"],
    }), 201


@auth_bp.post("/login")
def login_route():
    """
    Authenticate by username or email and create a session token.

    Token must be included in the Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        identifier = data.get("username") or data.get("email") or data.get("identifier")
        password = data.get("password")

        if not all([identifier, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user = auth_service.authenticate(get_data_adapter(), identifier, password)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr
        )

        return jsonify({
            "user": public_user(user),
            "token": token,
            "session": session.to_dict(),
            "store_id": session.store_id,
            "message": "Login successful"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """Revoke the session token in the Authorization header."""
    try:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authorization header required"}), 401

        token = auth_header.split(" ", 1)[1]

        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    adapter = get_data_adapter()
    store = adapter.get_store(g.store_id) if g.store_id else None
    subscription = adapter.get_subscription_by_user(g.current_user["id"])
    plan = subscription_service.plan_for_store(adapter, g.store_id) if g.store_id else None
    return jsonify({
        "user": g.current_user,
        "store": store,
        "subscription": subscription,
        "plan": plan.to_dict() if plan else None,
    }), 200


@auth_bp.post("/check-user")
def check_user_route():
    """Report whether an account exists for the given email or username."""
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.user_exists(
            get_data_adapter(),
            email=data.get("email"),
            username=data.get("username"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    if user is None:
        return jsonify({"exists": False}), 200
    return jsonify({
        "exists": True,
        "user": {"id": user["id"], "email": user["email"], "username": user["username"]},
    }), 200


@auth_bp.post("/cleanup-user")
@require_auth
@require_role("owner", "admin")
def cleanup_user_route():
    """
    Remove an account (and the store it owns) by email or username.

    Only accounts in the caller's own store can be removed.
    """
    data = request.get_json(silent=True) or {}
    adapter = get_data_adapter()
    try:
        target = auth_service.user_exists(adapter, email=data.get("email"), username=data.get("username"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    if target is None or target.get("store_id") != g.store_id:
        return jsonify({"error": "User not found"}), 404

    try:
        summary = auth_service.cleanup_user(adapter, email=target["email"])
    except Exception:
        current_app.logger.exception("Failed to clean up user")
        return jsonify({"error": "Internal server error"}), 500

    # Queued deletes: the remote copies stay until pushed.
    try:
        get_sync_manager().sync_now()
    except Exception:
        current_app.logger.exception("Post-cleanup sync failed")

    return jsonify({"message": "User removed", **summary}), 200
