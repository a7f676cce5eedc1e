# backend/stockline/routes/system.py
"""
System health endpoint.

Reports the state of both storage tiers and the sync manager. Returns 503
only when the remote database is unreachable; a backlog in the sync queue
or dead-lettered entries degrade the status but the service stays up.
"""

import time
from flask import Blueprint, current_app

from ..extensions import get_local_store, get_remote, get_sync_manager
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_remote_health() -> dict:
    start_time = time.time()
    healthy = get_remote().ping()
    elapsed_ms = (time.time() - start_time) * 1000
    if not healthy:
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Remote database unreachable",
        }
    return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}


def check_local_cache_health() -> dict:
    start_time = time.time()
    try:
        store = get_local_store()
        details = {
            "schema_version": store.schema_version,
            "pending_operations": store.pending_count(),
            "dead_letters": store.dead_letter_count(),
        }
    except Exception:
        current_app.logger.exception("Local cache health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Local cache error",
        }

    return {
        "status": "degraded" if details["dead_letters"] else "healthy",
        "latency_ms": round((time.time() - start_time) * 1000, 2),
        "details": details,
    }


def check_sync_health() -> dict:
    status = get_sync_manager().status()
    if not status["online"]:
        return {"status": "degraded", "warning": "Sync manager is offline", "details": status}
    return {"status": "healthy", "details": status}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: remote database or local cache unhealthy
    """
    start_time = time.time()

    checks = {
        "remote_database": check_remote_health(),
        "local_cache": check_local_cache_health(),
        "sync": check_sync_health(),
    }

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status
