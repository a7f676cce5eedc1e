from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Notification(db.Model):
    """
    In-app notifications shown in the bell menu.

    LOW STOCK: the engine keys low_stock rows with dedup_key
    "low_stock:<product_id>". The unique constraint makes a second current
    row for the same product impossible; rows written before the key existed
    have dedup_key NULL and are handled by the dedup sweep.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.UniqueConstraint("dedup_key", name="uq_notifications_dedup_key"),
        db.Index("ix_notifications_store_read", "store_id", "is_read"),
        db.Index("ix_notifications_store_related", "store_id", "type", "related_item_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.String(36), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)  # low_stock, system, order, customer
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    priority = db.Column(db.String(8), nullable=False, default="medium")  # low, medium, high
    is_read = db.Column(db.Boolean, nullable=False, default=False)

    related_item_id = db.Column(db.Integer, nullable=True)
    action_link = db.Column(db.String(255), nullable=True)
    dedup_key = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "is_read": self.is_read,
            "related_item_id": self.related_item_id,
            "action_link": self.action_link,
            "dedup_key": self.dedup_key,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
        }
