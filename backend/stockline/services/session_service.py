# Overview: Service-layer operations for session; bearer token issue, validation and revocation.

"""
Session Token Management Service

Tokens are cryptographically secure, hashed in the database and
time-limited.

TENANCY: sessions capture store_id at creation time. The tenant context of
an authenticated request is taken from the session record, not the user.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- 24-hour absolute timeout (SESSION_ABSOLUTE_TIMEOUT)
- 2-hour idle timeout (SESSION_IDLE_TIMEOUT)
- Revocable on logout or account removal
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken
from ..models.auth import public_user
from ..time_utils import coerce_datetime, utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass
class SessionContext:
    """Authenticated user record (no password hash) plus tenant context."""
    user: dict
    session: SessionToken
    store_id: str | None


def generate_token() -> str:
    """64-character hex string; the plaintext token sent to the client, never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    Tokens are high-entropy, so a fast hash is sufficient (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    user: dict,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Create a session token for `user` (a user record).

    Returns (session_record, plaintext_token).
    """
    if not user or not user.get("id"):
        raise ValueError("User not found")
    if not user.get("is_active", True):
        raise ValueError("User account is deactivated")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user["id"],
        store_id=user.get("store_id"),
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str, adapter) -> SessionContext | None:
    """
    Validate a session token and return its SessionContext.

    Returns None if the token is unknown, expired, idle too long or revoked,
    or if the user no longer exists or is deactivated. The user is loaded
    through the data adapter, so users still waiting in the sync queue can
    authenticate.
    """
    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return None

    if coerce_datetime(session.expires_at) < now:
        return None

    if now - coerce_datetime(session.last_used_at) > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout")
        return None

    user = adapter.get_user(session.user_id)
    if not user or not user.get("is_active", True):
        _revoke(session, "User account deactivated")
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(
        user=public_user(user),
        session=session,
        store_id=session.store_id
    )


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke a session token. Returns False if no active session matches."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    _revoke(session, reason)
    return True


def revoke_all_user_sessions(user_id: str, reason: str = "Revoke all sessions") -> int:
    """Revoke all active sessions for a user. Returns count of sessions revoked."""
    now = utcnow()

    sessions = db.session.query(SessionToken).filter_by(
        user_id=user_id,
        is_revoked=False
    ).all()

    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = reason

    db.session.commit()
    return len(sessions)
