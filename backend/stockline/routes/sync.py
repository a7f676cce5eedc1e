# Overview: Flask API routes for the sync manager; status, manual passes and dead letters.

from flask import Blueprint, g

from ..decorators import require_auth, require_developer, require_role
from ..extensions import get_sync_manager

sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


def _dead_letter_scope():
    """
    Store whose dead letters the caller may see.

    The queue is shared by every tenant: developers see all of it (None),
    store owners and admins only entries owned by their store.
    """
    if g.current_user.get("is_developer"):
        return None
    return g.store_id


@sync_bp.get("/status")
@require_auth
def sync_status():
    return get_sync_manager().status()


@sync_bp.post("/run")
@require_auth
def run_sync():
    """Run one pass now. Skipped (not queued) if a pass is in flight or offline."""
    report = get_sync_manager().sync_now()
    return report.to_dict()


@sync_bp.get("/dead-letters")
@require_auth
@require_role("owner", "admin", "developer")
def list_dead_letters():
    scope = _dead_letter_scope()
    if scope is None and not g.current_user.get("is_developer"):
        return {"items": []}
    return {"items": get_sync_manager().dead_letters(store_id=scope)}


@sync_bp.post("/dead-letters/<int:operation_id>/requeue")
@require_auth
@require_role("owner", "admin", "developer")
def requeue_dead_letter(operation_id: int):
    scope = _dead_letter_scope()
    allowed = scope is not None or g.current_user.get("is_developer")
    if not allowed or not get_sync_manager().requeue(operation_id, store_id=scope):
        return {"error": "Dead-lettered operation not found"}, 404
    return {"ok": True, "operation_id": operation_id}


# The network switch is process-wide, so only developers may flip it.
@sync_bp.post("/online")
@require_auth
@require_developer
def go_online():
    manager = get_sync_manager()
    manager.set_online(True)
    return manager.status()


@sync_bp.post("/offline")
@require_auth
@require_developer
def go_offline():
    manager = get_sync_manager()
    manager.set_online(False)
    return manager.status()
