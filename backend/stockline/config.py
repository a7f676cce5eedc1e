# backend/stockline/config.py
from __future__ import annotations

import os

from sqlalchemy.engine import make_url

DEV_REMOTE_DATABASE_URL = "sqlite:///stockline_remote.sqlite3"
DEV_LOCAL_CACHE_URL = "sqlite:///stockline_cache.sqlite3"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def build_remote_database_uri(url: str | None, user: str | None, password: str | None) -> str:
    """
    Merge the remote credentials into the remote database URL.

    Credentials given separately win over any embedded in the URL.
    """
    if not url:
        return DEV_REMOTE_DATABASE_URL
    parsed = make_url(url)
    if user:
        parsed = parsed.set(username=user)
    if password:
        parsed = parsed.set(password=password)
    return parsed.render_as_string(hide_password=False)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Remote relational database (source of truth). Falls back to a local
    # SQLite file for development; create_app() warns when that happens.
    REMOTE_DATABASE_URL = os.environ.get("REMOTE_DATABASE_URL")
    REMOTE_DATABASE_USER = os.environ.get("REMOTE_DATABASE_USER")
    REMOTE_DATABASE_PASSWORD = os.environ.get("REMOTE_DATABASE_PASSWORD")
    SQLALCHEMY_DATABASE_URI = build_remote_database_uri(
        REMOTE_DATABASE_URL,
        REMOTE_DATABASE_USER,
        REMOTE_DATABASE_PASSWORD,
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Local cache store (offline shadow copies + sync queue)
    LOCAL_CACHE_URL = os.environ.get("LOCAL_CACHE_URL", DEV_LOCAL_CACHE_URL)

    # Sync manager
    SYNC_AUTOSTART = _env_bool("SYNC_AUTOSTART", True)
    SYNC_INTERVAL_SECONDS = _env_int("SYNC_INTERVAL_SECONDS", 30)
    SYNC_MAX_ATTEMPTS = _env_int("SYNC_MAX_ATTEMPTS", 5)
    SYNC_BACKOFF_BASE_SECONDS = _env_int("SYNC_BACKOFF_BASE_SECONDS", 30)
    SYNC_BACKOFF_MAX_SECONDS = _env_int("SYNC_BACKOFF_MAX_SECONDS", 900)

    # Tables whose writes go local-first through the sync queue.
    # Everything else is written to the remote database first.
    OFFLINE_QUEUED_TABLES = _env_list("OFFLINE_QUEUED_TABLES", ("users", "stores", "subscriptions"))

    # Notifications
    LOW_STOCK_DEFAULT_THRESHOLD = _env_int("LOW_STOCK_DEFAULT_THRESHOLD", 5)
    NOTIFICATION_READ_RETENTION_DAYS = _env_int("NOTIFICATION_READ_RETENTION_DAYS", 7)

    # Subscriptions
    TRIAL_DAYS = _env_int("TRIAL_DAYS", 14)

    # Browser origins allowed to call the API
    CORS_ALLOWED_ORIGINS = _env_list(
        "CORS_ALLOWED_ORIGINS",
        ("http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:4173", "http://127.0.0.1:4173"),
    )

    # Logging
    LOG_DIR = os.environ.get("LOG_DIR")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
