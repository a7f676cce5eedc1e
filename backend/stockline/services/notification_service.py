# Overview: Notification reconciliation engine; derives low-stock alerts from inventory.

"""
Notification Reconciliation Engine

Keeps at most one current low_stock notification per product.

WRITE PATH: low_stock rows carry dedup_key "low_stock:<product_id>". The
unique constraint on dedup_key means the engine can only ever hold one keyed
row per product. When the stock wording changes, the old row is deleted and
a fresh unread row with the same key is inserted in one transaction
(supersede), so the user sees the alert again.

REPAIR PATH: the dedup sweep runs first on every pass. It collapses rows
that predate the key (dedup_key NULL) to one per product, keeping the newest
unread row if there is one, else the newest row. It also drops read
notifications older than the retention window and rows past their
expires_at. Expired rows are hidden from listings until the sweep runs.

CONCURRENCY: two passes for one store can race to insert the same
dedup_key. The loser's transaction rolls back and it runs once more; the
winner's rows are visible by then, so the retry only reads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import RemoteServiceError
from ..models import Notification, Product
from ..time_utils import coerce_datetime, utcnow

logger = logging.getLogger(__name__)

TYPE_LOW_STOCK = "low_stock"
NOTIFICATION_TYPES = {"low_stock", "system", "order", "customer"}
PRIORITIES = {"low", "medium", "high"}

LOW_STOCK_ACTION_LINK = "/inventory"


@dataclass
class ReconcileResult:
    notifications: list[dict] = field(default_factory=list)
    created: int = 0
    superseded: int = 0
    duplicates_removed: int = 0
    expired_removed: int = 0

    def to_dict(self) -> dict:
        return {
            "notifications": self.notifications,
            "created": self.created,
            "superseded": self.superseded,
            "duplicates_removed": self.duplicates_removed,
            "expired_removed": self.expired_removed,
        }


def low_stock_key(product_id: int) -> str:
    return f"{TYPE_LOW_STOCK}:{product_id}"


def low_stock_wording(name: str, quantity: int) -> tuple[str, str, str]:
    """(title, message, priority) for a product at the given quantity."""
    if quantity <= 0:
        return (
            "Out of Stock Alert",
            f"{name} is out of stock. Please reorder immediately.",
            "high",
        )
    return (
        "Low Stock Alert",
        f"{name} is running low on stock ({quantity} remaining)",
        "medium",
    )


class NotificationEngine:
    def __init__(self, remote, *, default_threshold: int = 5, read_retention_days: int = 7):
        self.remote = remote
        self.default_threshold = default_threshold
        self.read_retention = timedelta(days=read_retention_days)

    def threshold_for(self, product) -> int:
        if product.min_stock_level is not None:
            return product.min_stock_level
        return self.default_threshold

    def is_low(self, product) -> bool:
        if product.status == "discontinued":
            return False
        return product.quantity <= self.threshold_for(product)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _ordered(self, session, store_id: str):
        return (
            session.query(Notification)
            .filter(Notification.store_id == store_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )

    def _sweep(self, session, store_id: str, result: ReconcileResult) -> dict[int, Notification]:
        """Dedup + retention pass. Returns the surviving low_stock row per product."""
        now = utcnow()
        cutoff = now - self.read_retention
        kept: dict[int, Notification] = {}
        doomed: list[Notification] = []

        groups: dict[int, list[Notification]] = {}
        for notification in self._ordered(session, store_id).all():
            created_at = coerce_datetime(notification.created_at)
            expires_at = coerce_datetime(notification.expires_at)
            expired = expires_at is not None and expires_at <= now
            if expired or (notification.is_read and created_at is not None and created_at < cutoff):
                doomed.append(notification)
                result.expired_removed += 1
                continue
            if notification.type == TYPE_LOW_STOCK and notification.related_item_id is not None:
                groups.setdefault(notification.related_item_id, []).append(notification)

        for product_id, rows in groups.items():
            # rows are newest first
            survivor = next((n for n in rows if not n.is_read), rows[0])
            kept[product_id] = survivor
            for n in rows:
                if n is not survivor:
                    doomed.append(n)
                    result.duplicates_removed += 1

        for n in doomed:
            session.delete(n)
        if doomed:
            session.flush()
        return kept

    def _insert_low_stock(self, session, product, title: str, message: str, priority: str) -> Notification:
        notification = Notification(
            store_id=product.store_id,
            type=TYPE_LOW_STOCK,
            title=title,
            message=message,
            priority=priority,
            is_read=False,
            related_item_id=product.id,
            action_link=LOW_STOCK_ACTION_LINK,
            dedup_key=low_stock_key(product.id),
            created_at=utcnow(),
        )
        session.add(notification)
        return notification

    def reconcile(self, store_id: str) -> ReconcileResult:
        """
        Run one reconciliation pass for a tenant.

        Idempotent: a second pass with no inventory change writes nothing.
        """
        try:
            result = self._reconcile_once(store_id)
        except RemoteServiceError as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            logger.info("Concurrent reconciliation for store %s inserted the same dedup key; retrying", store_id)
            result = self._reconcile_once(store_id)

        if result.created or result.superseded or result.duplicates_removed or result.expired_removed:
            logger.info(
                "Reconciled notifications for store %s: created=%s superseded=%s duplicates=%s expired=%s",
                store_id,
                result.created,
                result.superseded,
                result.duplicates_removed,
                result.expired_removed,
            )
        return result

    def _reconcile_once(self, store_id: str) -> ReconcileResult:
        result = ReconcileResult()
        with self.remote.transaction() as session:
            kept = self._sweep(session, store_id, result)

            products = (
                session.query(Product)
                .filter(Product.store_id == store_id)
                .order_by(Product.id)
                .all()
            )
            for product in products:
                if not self.is_low(product):
                    continue
                title, message, priority = low_stock_wording(product.name, product.quantity)
                existing = kept.get(product.id)

                if existing is None:
                    self._insert_low_stock(session, product, title, message, priority)
                    result.created += 1
                elif existing.title != title or existing.message != message:
                    session.delete(existing)
                    session.flush()
                    self._insert_low_stock(session, product, title, message, priority)
                    result.superseded += 1
                elif existing.dedup_key is None:
                    existing.dedup_key = low_stock_key(product.id)

            session.flush()
            result.notifications = [n.to_dict() for n in self._ordered(session, store_id).all()]
        return result

    # ------------------------------------------------------------------
    # Listing and user actions
    # ------------------------------------------------------------------

    @staticmethod
    def _live(query):
        """Leave out rows past their expires_at."""
        return query.filter(
            or_(Notification.expires_at.is_(None), Notification.expires_at > utcnow())
        )

    def list_notifications(self, store_id: str, *, unread_only: bool = False) -> list[dict]:
        query = self._live(self._ordered(self.remote.session, store_id))
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        return [n.to_dict() for n in query.all()]

    def get_unread(self, store_id: str) -> list[dict]:
        return self.list_notifications(store_id, unread_only=True)

    def unread_count(self, store_id: str) -> int:
        query = self.remote.session.query(Notification).filter(
            Notification.store_id == store_id, Notification.is_read.is_(False)
        )
        return self._live(query).count()

    def add_notification(
        self,
        store_id: str,
        *,
        type: str,
        title: str,
        message: str,
        priority: str = "medium",
        related_item_id: Optional[int] = None,
        action_link: Optional[str] = None,
        expires_at=None,
    ) -> dict:
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"type must be one of: {', '.join(sorted(NOTIFICATION_TYPES))}")
        if priority not in PRIORITIES:
            raise ValueError(f"priority must be one of: {', '.join(sorted(PRIORITIES))}")
        with self.remote.transaction() as session:
            notification = Notification(
                store_id=store_id,
                type=type,
                title=title,
                message=message,
                priority=priority,
                is_read=False,
                related_item_id=related_item_id,
                action_link=action_link,
                expires_at=coerce_datetime(expires_at),
                created_at=utcnow(),
            )
            session.add(notification)
            session.flush()
            created = notification.to_dict()
        return created

    def _get_owned(self, session, store_id: str, notification_id: int) -> Optional[Notification]:
        notification = session.get(Notification, notification_id)
        if notification is None or notification.store_id != store_id:
            return None
        return notification

    def mark_as_read(self, store_id: str, notification_id: int) -> Optional[dict]:
        with self.remote.transaction() as session:
            notification = self._get_owned(session, store_id, notification_id)
            if notification is None:
                return None
            notification.is_read = True
            session.flush()
            updated = notification.to_dict()
        return updated

    def mark_all_as_read(self, store_id: str) -> int:
        with self.remote.transaction() as session:
            updated = (
                session.query(Notification)
                .filter(Notification.store_id == store_id, Notification.is_read.is_(False))
                .update({Notification.is_read: True}, synchronize_session=False)
            )
        return updated

    def delete_notification(self, store_id: str, notification_id: int) -> bool:
        with self.remote.transaction() as session:
            notification = self._get_owned(session, store_id, notification_id)
            if notification is None:
                return False
            session.delete(notification)
        return True

    def delete_all(self, store_id: str) -> int:
        with self.remote.transaction() as session:
            deleted = (
                session.query(Notification)
                .filter(Notification.store_id == store_id)
                .delete(synchronize_session=False)
            )
        return deleted

    def reset(self, store_id: Optional[str] = None) -> int:
        """Unconditional clear; every tenant when store_id is None."""
        with self.remote.transaction() as session:
            query = session.query(Notification)
            if store_id is not None:
                query = query.filter(Notification.store_id == store_id)
            deleted = query.delete(synchronize_session=False)
        logger.warning("Notifications reset for %s (%s rows)", store_id or "all stores", deleted)
        return deleted
