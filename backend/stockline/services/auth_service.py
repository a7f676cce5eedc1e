# Overview: Service-layer operations for auth; registration, password hashing and account cleanup.

"""
Authentication Service

Registration creates three records for a new tenant: the store, its owner
user and a trial subscription. All three are account entities, written
through the DataAdapter's queued policy, so registration succeeds while the
remote database is unreachable and the sync manager pushes them later.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, with upper, lower, digit and special character
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta

import bcrypt

from ..models.tenancy import new_uuid
from ..time_utils import to_utc_z, utcnow
from ..validation import ConflictError, ValidationError
from .subscription_service import PLANS, TIER_FREE, get_plan, store_limits

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Hash password using bcrypt. Password is validated for strength before hashing."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str | None) -> bool:
    """Timing-safe check of `password` against a bcrypt hash."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash
        return False


def user_exists(adapter, *, email: str | None = None, username: str | None = None) -> dict | None:
    """Look a user up by email first, then by username."""
    if not email and not username:
        raise ValidationError("Email or username is required")
    user = adapter.get_user_by_email(email) if email else None
    if user is None and username:
        user = adapter.get_user_by_username(username)
    return user


def register_user(
    adapter,
    *,
    username: str,
    email: str,
    password: str,
    store_name: str,
    store_address: str | None = None,
    store_phone: str | None = None,
    store_email: str | None = None,
    subscription_tier: str = TIER_FREE,
    trial_days: int = 14,
) -> dict:
    """
    Register a new tenant: store + owner user + trial subscription.

    Returns {"user", "store", "subscription"}; the user record still carries
    its password hash, strip it with public_user() before responding.

    Raises ValidationError for bad input, ConflictError if the email or
    username is taken.
    """
    username = (username or "").strip()
    email = (email or "").strip().lower()
    store_name = (store_name or "").strip()
    missing = [name for name, value in (("username", username), ("email", email), ("store_name", store_name)) if not value]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if "@" not in email:
        raise ValidationError("email must be a valid email address")
    tier = subscription_tier or TIER_FREE
    if tier not in PLANS:
        raise ValidationError(f"subscription_tier must be one of: {', '.join(PLANS)}")

    if adapter.get_user_by_email(email):
        raise ConflictError("User with this email already exists")
    if adapter.get_user_by_username(username):
        raise ConflictError("Username is already taken")

    password_hash = hash_password(password)

    user_id = new_uuid()
    store_id = new_uuid()
    now = utcnow()
    trial_ends_at = now + timedelta(days=trial_days)

    store = adapter.save_store({
        "id": store_id,
        "name": store_name,
        "address": store_address,
        "phone": store_phone,
        "email": store_email,
        "owner_id": user_id,
        "subscription_status": "trial",
        **store_limits(get_plan(tier)),
    })
    if store is None:
        raise RuntimeError("Failed to create store")

    user = adapter.save_user({
        "id": user_id,
        "username": username,
        "email": email,
        "password_hash": password_hash,
        "role": "owner",
        "store_id": store_id,
        "subscription_tier": tier,
        "subscription_status": "trial",
        "trial_ends_at": to_utc_z(trial_ends_at),
        "is_active": True,
    })
    if user is None:
        raise RuntimeError("Failed to create user")

    subscription = adapter.save_subscription({
        "id": new_uuid(),
        "user_id": user_id,
        "store_id": store_id,
        "tier": tier,
        "status": "trial",
        "current_period_start": to_utc_z(now),
        "current_period_end": to_utc_z(trial_ends_at),
        "cancel_at_period_end": False,
    })
    if subscription is None:
        raise RuntimeError("Failed to create subscription")

    logger.info("Registered store %s with owner %s (%s tier)", store_id, user_id, tier)
    return {"user": user, "store": store, "subscription": subscription}


def create_developer(adapter, *, username: str, email: str, password: str) -> dict:
    """
    Create a developer (cross-tenant operator) account.

    Developers have is_developer=True and no store binding: they see no
    tenant data, but may operate the process-wide sync manager.
    """
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username or not email:
        raise ValidationError("Missing required fields: username, email")
    if adapter.get_user_by_email(email) or adapter.get_user_by_username(username):
        raise ConflictError(f"User '{username}' already exists")

    user = adapter.save_user({
        "id": new_uuid(),
        "username": username,
        "email": email,
        "password_hash": hash_password(password),
        "role": "developer",
        "store_id": None,
        "is_active": True,
        "is_developer": True,
    })
    if user is None:
        raise RuntimeError("Failed to create developer user")
    logger.info("Created developer user %s", user["id"])
    return user


def authenticate(adapter, identifier: str, password: str) -> dict | None:
    """
    Authenticate by username or email.

    Returns the user record if credentials are valid and the account is
    active, None otherwise.
    """
    if not identifier or not password:
        return None
    user = adapter.get_user_by_email(identifier) if "@" in identifier else None
    if user is None:
        user = adapter.get_user_by_username(identifier)
    if user is None or not user.get("is_active", True):
        return None
    if not verify_password(password, user.get("password_hash")):
        return None
    return user


def cleanup_user(adapter, *, email: str | None = None, username: str | None = None) -> dict | None:
    """
    Delete a user account together with the store it owns and that store's
    subscription. Returns a summary, or None when no such user exists.
    """
    from . import session_service

    user = user_exists(adapter, email=email, username=username)
    if user is None:
        return None

    summary = {"user_id": user["id"], "store_id": None, "subscription_id": None, "sessions_revoked": 0}

    summary["sessions_revoked"] = session_service.revoke_all_user_sessions(user["id"], reason="Account removed")

    subscription = adapter.get_subscription_by_user(user["id"])
    if subscription is not None:
        adapter.delete_subscription(subscription["id"])
        summary["subscription_id"] = subscription["id"]

    store_id = user.get("store_id")
    if store_id:
        store = adapter.get_store(store_id)
        if store is not None and store.get("owner_id") == user["id"]:
            adapter.delete_store(store_id)
            summary["store_id"] = store_id

    adapter.delete_user(user["id"])
    logger.warning("Removed user %s (store %s)", user["id"], summary["store_id"])
    return summary
