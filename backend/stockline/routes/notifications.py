# Overview: Flask API routes for notifications; list, reconcile, read and delete.

# backend/stockline/routes/notifications.py
"""
Notification routes (the bell menu).

GET /api/notifications?unread=1&reconcile=1
    reconcile=1 runs a reconciliation pass for the store before listing.
"""

from flask import Blueprint, request, g, current_app

from ..decorators import require_auth, require_store, require_role
from ..errors import RemoteServiceError
from ..extensions import get_notification_engine

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in _TRUTHY


@notifications_bp.get("")
@require_auth
@require_store
def list_notifications():
    engine = get_notification_engine()
    if _flag("reconcile"):
        try:
            engine.reconcile(g.store_id)
        except RemoteServiceError:
            current_app.logger.exception("Reconciliation failed for store %s", g.store_id)
            return {"error": "Remote database unavailable"}, 503
    items = engine.list_notifications(g.store_id, unread_only=_flag("unread"))
    return {"items": items, "unread_count": engine.unread_count(g.store_id)}


@notifications_bp.post("")
@require_auth
@require_store
@require_role("owner", "admin")
def create_notification():
    """Post a manual notification (system, order or customer), optionally with an ISO expires_at."""
    payload = request.get_json(silent=True) or {}
    title = (payload.get("title") or "").strip()
    message = (payload.get("message") or "").strip()
    if not title or not message:
        return {"error": "title and message are required"}, 400
    try:
        created = get_notification_engine().add_notification(
            g.store_id,
            type=payload.get("type") or "system",
            title=title,
            message=message,
            priority=payload.get("priority") or "medium",
            action_link=payload.get("action_link"),
            expires_at=payload.get("expires_at"),
        )
    except ValueError as e:
        return {"error": str(e)}, 400
    return created, 201


@notifications_bp.post("/reconcile")
@require_auth
@require_store
def reconcile_notifications():
    try:
        result = get_notification_engine().reconcile(g.store_id)
    except RemoteServiceError:
        current_app.logger.exception("Reconciliation failed for store %s", g.store_id)
        return {"error": "Remote database unavailable"}, 503
    return result.to_dict()


@notifications_bp.post("/<int:notification_id>/read")
@require_auth
@require_store
def mark_notification_read(notification_id: int):
    notification = get_notification_engine().mark_as_read(g.store_id, notification_id)
    if notification is None:
        return {"error": "Notification not found"}, 404
    return notification


@notifications_bp.post("/read-all")
@require_auth
@require_store
def mark_all_notifications_read():
    engine = get_notification_engine()
    updated = engine.mark_all_as_read(g.store_id)
    return {"updated": updated, "unread_count": engine.unread_count(g.store_id)}


@notifications_bp.delete("/<int:notification_id>")
@require_auth
@require_store
def delete_notification(notification_id: int):
    if not get_notification_engine().delete_notification(g.store_id, notification_id):
        return {"error": "Notification not found"}, 404
    return {"ok": True}


@notifications_bp.delete("")
@require_auth
@require_store
def delete_all_notifications():
    return {"deleted": get_notification_engine().delete_all(g.store_id)}


@notifications_bp.post("/reset")
@require_auth
@require_store
@require_role("owner", "admin")
def reset_notifications():
    """Unconditionally clear every notification of the store."""
    deleted = get_notification_engine().reset(g.store_id)
    current_app.logger.info("Notifications reset for store %s by %s", g.store_id, g.current_user["id"])
    return {"deleted": deleted}
