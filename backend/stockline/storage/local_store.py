# Overview: Local cache store; offline shadow copies of entities plus the pending sync queue.

"""
LocalCacheStore - SQLite-backed shadow copies of remote entities.

Each record lives in a named collection keyed by entity id and carries two
sync fields:

- sync_status: pending | synced | error
- last_modified: time of the last local write (observability only)

Every local write through save/update/delete appends an entry to the sync
queue; the SyncManager drains it into the remote database.

CONCURRENCY: no locking. The SyncManager runs one pass at a time, and each
method is a single short transaction.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from ..errors import LocalStoreError, RecordNotFoundError
from ..time_utils import utcnow, to_utc_z
from .schema_mapping import strip_sync_fields, to_canonical

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

# Collections written through the sync queue.
COLLECTIONS = ("users", "stores", "subscriptions")
# Collections kept from the first cache layout; write-through mirrors land here.
LEGACY_COLLECTIONS = ("products", "customers", "sales", "payments", "settings")
ALL_COLLECTIONS = COLLECTIONS + LEGACY_COLLECTIONS + ("returns",)

SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"
SYNC_ERROR = "error"

OP_CREATE = "create"
OP_UPDATE = "update"
OP_DELETE = "delete"

QUEUE_PENDING = "pending"
QUEUE_DEAD = "dead"

# Dropped from queue entries shown to operators.
SECRET_FIELDS = frozenset({"password_hash", "stripe_customer_id"})

metadata = sa.MetaData()

cache_records = sa.Table(
    "cache_records",
    metadata,
    sa.Column("collection", sa.String(32), primary_key=True),
    sa.Column("entity_id", sa.String(64), primary_key=True),
    sa.Column("data_json", sa.Text, nullable=False),
    sa.Column("sync_status", sa.String(16), nullable=False, default=SYNC_PENDING),
    sa.Column("last_modified", sa.DateTime, nullable=False),
)

sync_queue = sa.Table(
    "sync_queue",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("operation", sa.String(16), nullable=False),
    sa.Column("table_name", sa.String(32), nullable=False, index=True),
    sa.Column("entity_id", sa.String(64), nullable=False, index=True),
    sa.Column("data_json", sa.Text, nullable=True),
    sa.Column("timestamp", sa.DateTime, nullable=False),
    sa.Column("attempts", sa.Integer, nullable=False, default=0),
    sa.Column("status", sa.String(16), nullable=False, default=QUEUE_PENDING, index=True),
    sa.Column("last_error", sa.Text, nullable=True),
    sa.Column("next_attempt_at", sa.DateTime, nullable=True),
)

cache_meta = sa.Table(
    "cache_meta",
    metadata,
    sa.Column("key", sa.String(64), primary_key=True),
    sa.Column("value", sa.Text, nullable=True),
)


@dataclass
class SyncQueueEntry:
    """A locally-originated write waiting for remote confirmation."""
    id: int
    operation: str
    table: str
    entity_id: str
    data: dict[str, Any]
    timestamp: datetime
    attempts: int = 0
    status: str = QUEUE_PENDING
    last_error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None

    @property
    def store_id(self) -> Optional[str]:
        """Tenant owning the queued record, read from its snapshot."""
        if self.table == "stores":
            return self.entity_id
        return self.data.get("store_id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operation": self.operation,
            "table": self.table,
            "entity_id": self.entity_id,
            "data": {k: v for k, v in self.data.items() if k not in SECRET_FIELDS},
            "timestamp": to_utc_z(self.timestamp),
            "attempts": self.attempts,
            "status": self.status,
            "last_error": self.last_error,
            "next_attempt_at": to_utc_z(self.next_attempt_at),
        }


def _dumps(data: dict) -> str:
    return json.dumps(data, default=str, sort_keys=True)


def _row_to_entry(row) -> SyncQueueEntry:
    return SyncQueueEntry(
        id=row.id,
        operation=row.operation,
        table=row.table_name,
        entity_id=row.entity_id,
        data=json.loads(row.data_json) if row.data_json else {},
        timestamp=row.timestamp,
        attempts=row.attempts,
        status=row.status,
        last_error=row.last_error,
        next_attempt_at=row.next_attempt_at,
    )


def _create_engine(url: str) -> sa.Engine:
    if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:"):
        return sa.create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return sa.create_engine(url, connect_args={"check_same_thread": False})
    return sa.create_engine(url)


class LocalCacheStore:
    """
    Key-value shadow store for entities, plus the pending-operation queue.

    Usage:
        store = LocalCacheStore("sqlite:///cache.sqlite3")
        store.save("users", {"id": "u-1", "email": "a@b.c"})
        store.list_pending_operations()
    """

    def __init__(self, url: str):
        self.url = url
        self.engine = _create_engine(url)
        self._upgrade()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _upgrade(self) -> None:
        """Additive upgrade: create missing tables, then record the version."""
        try:
            metadata.create_all(self.engine, checkfirst=True)
            with self.engine.begin() as conn:
                current = self._read_version(conn)
                if current != SCHEMA_VERSION:
                    if current is None:
                        conn.execute(sa.insert(cache_meta).values(key="schema_version", value=str(SCHEMA_VERSION)))
                    else:
                        conn.execute(
                            sa.update(cache_meta)
                            .where(cache_meta.c.key == "schema_version")
                            .values(value=str(SCHEMA_VERSION))
                        )
                    logger.info("Local cache schema upgraded from %s to %s", current, SCHEMA_VERSION)
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to open local cache at {self.url}") from exc

    @staticmethod
    def _read_version(conn) -> Optional[int]:
        value = conn.execute(
            sa.select(cache_meta.c.value).where(cache_meta.c.key == "schema_version")
        ).scalar()
        return int(value) if value is not None else None

    @property
    def schema_version(self) -> Optional[int]:
        with self.engine.connect() as conn:
            return self._read_version(conn)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    @staticmethod
    def _check_collection(collection: str) -> None:
        if collection not in ALL_COLLECTIONS:
            raise LocalStoreError(f"Unknown collection: {collection}")

    def _select_record(self, conn, collection: str, entity_id) -> Optional[dict]:
        row = conn.execute(
            sa.select(cache_records.c.data_json).where(
                cache_records.c.collection == collection,
                cache_records.c.entity_id == str(entity_id),
            )
        ).first()
        if row is None:
            return None
        return to_canonical(strip_sync_fields(json.loads(row.data_json)))

    def _write_record(self, conn, collection: str, entity: dict, sync_status: str) -> None:
        entity_id = str(entity["id"])
        values = {
            "data_json": _dumps(entity),
            "sync_status": sync_status,
            "last_modified": utcnow(),
        }
        updated = conn.execute(
            sa.update(cache_records)
            .where(
                cache_records.c.collection == collection,
                cache_records.c.entity_id == entity_id,
            )
            .values(**values)
        )
        if updated.rowcount == 0:
            conn.execute(sa.insert(cache_records).values(collection=collection, entity_id=entity_id, **values))

    def _enqueue(self, conn, operation: str, collection: str, entity_id, data: dict | None) -> None:
        conn.execute(
            sa.insert(sync_queue).values(
                operation=operation,
                table_name=collection,
                entity_id=str(entity_id),
                data_json=_dumps(data) if data is not None else None,
                timestamp=utcnow(),
                attempts=0,
                status=QUEUE_PENDING,
            )
        )

    def get(self, collection: str, entity_id) -> Optional[dict]:
        """Return the record without sync fields, or None."""
        self._check_collection(collection)
        try:
            with self.engine.connect() as conn:
                return self._select_record(conn, collection, entity_id)
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to read {collection}/{entity_id}") from exc

    def get_by_index(self, collection: str, field: str, value) -> Optional[dict]:
        """First record in `collection` whose `field` equals `value`, or None."""
        for record in self.all(collection):
            if record.get(field) == value:
                return record
        return None

    def all(self, collection: str) -> list[dict]:
        self._check_collection(collection)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    sa.select(cache_records.c.data_json)
                    .where(cache_records.c.collection == collection)
                    .order_by(cache_records.c.entity_id)
                ).all()
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to scan {collection}") from exc
        return [to_canonical(strip_sync_fields(json.loads(r.data_json))) for r in rows]

    def save(self, collection: str, entity: dict) -> dict:
        """Upsert as pending and queue a create operation."""
        self._check_collection(collection)
        entity = to_canonical(strip_sync_fields(entity))
        if entity.get("id") is None:
            raise LocalStoreError(f"Cannot save {collection} record without an id")
        try:
            with self.engine.begin() as conn:
                self._write_record(conn, collection, entity, SYNC_PENDING)
                self._enqueue(conn, OP_CREATE, collection, entity["id"], entity)
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to save {collection}/{entity['id']}") from exc
        return entity

    def update(self, collection: str, entity_id, partial: dict) -> dict:
        """
        Merge `partial` into the existing record and queue an update.

        Raises RecordNotFoundError if the record is not cached locally.
        """
        self._check_collection(collection)
        partial = to_canonical(strip_sync_fields(partial))
        try:
            with self.engine.begin() as conn:
                existing = self._select_record(conn, collection, entity_id)
                if existing is None:
                    raise RecordNotFoundError(collection, entity_id)
                merged = {**existing, **partial, "id": existing["id"]}
                self._write_record(conn, collection, merged, SYNC_PENDING)
                self._enqueue(conn, OP_UPDATE, collection, entity_id, merged)
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to update {collection}/{entity_id}") from exc
        return merged

    def delete(self, collection: str, entity_id) -> bool:
        """
        Remove the record and queue a delete. Returns False if it was not cached.

        The queue entry keeps the last cached snapshot so the owning tenant stays known.
        """
        self._check_collection(collection)
        try:
            with self.engine.begin() as conn:
                existing = self._select_record(conn, collection, entity_id)
                removed = conn.execute(
                    sa.delete(cache_records).where(
                        cache_records.c.collection == collection,
                        cache_records.c.entity_id == str(entity_id),
                    )
                ).rowcount
                self._enqueue(conn, OP_DELETE, collection, entity_id, existing or {"id": entity_id})
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to delete {collection}/{entity_id}") from exc
        return bool(removed)

    def put_synced(self, collection: str, entity: dict) -> None:
        """Cache a record the remote database already holds. No queue entry."""
        self._check_collection(collection)
        entity = to_canonical(strip_sync_fields(entity))
        try:
            with self.engine.begin() as conn:
                self._write_record(conn, collection, entity, SYNC_SYNCED)
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to cache {collection}/{entity.get('id')}") from exc

    def evict(self, collection: str, entity_id) -> None:
        """Drop a cached record without queueing anything."""
        self._check_collection(collection)
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    sa.delete(cache_records).where(
                        cache_records.c.collection == collection,
                        cache_records.c.entity_id == str(entity_id),
                    )
                )
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to evict {collection}/{entity_id}") from exc

    def _set_sync_status(self, collection: str, entity_id, status: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    sa.update(cache_records)
                    .where(
                        cache_records.c.collection == collection,
                        cache_records.c.entity_id == str(entity_id),
                    )
                    .values(sync_status=status)
                )
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to mark {collection}/{entity_id} {status}") from exc

    def mark_synced(self, collection: str, entity_id) -> None:
        self._set_sync_status(collection, entity_id, SYNC_SYNCED)

    def mark_error(self, collection: str, entity_id) -> None:
        self._set_sync_status(collection, entity_id, SYNC_ERROR)

    def get_sync_status(self, collection: str, entity_id) -> Optional[str]:
        with self.engine.connect() as conn:
            return conn.execute(
                sa.select(cache_records.c.sync_status).where(
                    cache_records.c.collection == collection,
                    cache_records.c.entity_id == str(entity_id),
                )
            ).scalar()

    # ------------------------------------------------------------------
    # Sync queue
    # ------------------------------------------------------------------

    def list_pending_operations(self, due_before: Optional[datetime] = None) -> list[SyncQueueEntry]:
        """
        Pending queue entries in insertion order.

        With `due_before`, entries whose backoff has not elapsed are left out.
        """
        query = sa.select(sync_queue).where(sync_queue.c.status == QUEUE_PENDING)
        if due_before is not None:
            query = query.where(
                sa.or_(
                    sync_queue.c.next_attempt_at.is_(None),
                    sync_queue.c.next_attempt_at <= due_before,
                )
            )
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query.order_by(sync_queue.c.id)).all()
        except SQLAlchemyError as exc:
            raise LocalStoreError("Failed to read sync queue") from exc
        return [_row_to_entry(r) for r in rows]

    def get_operation(self, operation_id: int) -> Optional[SyncQueueEntry]:
        with self.engine.connect() as conn:
            row = conn.execute(sa.select(sync_queue).where(sync_queue.c.id == operation_id)).first()
        return _row_to_entry(row) if row is not None else None

    def clear_operation(self, operation_id: int) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(sa.delete(sync_queue).where(sync_queue.c.id == operation_id))
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to clear sync operation {operation_id}") from exc

    def record_failure(self, operation_id: int, error: str, next_attempt_at: datetime) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    sa.update(sync_queue)
                    .where(sync_queue.c.id == operation_id)
                    .values(
                        attempts=sync_queue.c.attempts + 1,
                        last_error=error,
                        next_attempt_at=next_attempt_at,
                    )
                )
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to record failure for sync operation {operation_id}") from exc

    def dead_letter(self, operation_id: int, error: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    sa.update(sync_queue)
                    .where(sync_queue.c.id == operation_id)
                    .values(
                        attempts=sync_queue.c.attempts + 1,
                        last_error=error,
                        status=QUEUE_DEAD,
                        next_attempt_at=None,
                    )
                )
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to dead-letter sync operation {operation_id}") from exc

    def list_dead_letters(self) -> list[SyncQueueEntry]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                sa.select(sync_queue).where(sync_queue.c.status == QUEUE_DEAD).order_by(sync_queue.c.id)
            ).all()
        return [_row_to_entry(r) for r in rows]

    def requeue(self, operation_id: int) -> bool:
        """Put a dead-lettered entry back in the queue with a fresh retry budget."""
        with self.engine.begin() as conn:
            updated = conn.execute(
                sa.update(sync_queue)
                .where(sync_queue.c.id == operation_id, sync_queue.c.status == QUEUE_DEAD)
                .values(status=QUEUE_PENDING, attempts=0, next_attempt_at=None)
            ).rowcount
        return bool(updated)

    def has_pending(self, collection: str, entity_id) -> bool:
        """True while any queue entry (pending or dead) exists for the record."""
        with self.engine.connect() as conn:
            return conn.execute(
                sa.select(sa.func.count())
                .select_from(sync_queue)
                .where(
                    sync_queue.c.table_name == collection,
                    sync_queue.c.entity_id == str(entity_id),
                )
            ).scalar_one() > 0

    def pending_count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(
                sa.select(sa.func.count()).select_from(sync_queue).where(sync_queue.c.status == QUEUE_PENDING)
            ).scalar_one()

    def dead_letter_count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(
                sa.select(sa.func.count()).select_from(sync_queue).where(sync_queue.c.status == QUEUE_DEAD)
            ).scalar_one()

    def clear(self) -> None:
        """Drop every cached record and queue entry. Schema is kept."""
        with self.engine.begin() as conn:
            conn.execute(sa.delete(sync_queue))
            conn.execute(sa.delete(cache_records))

    def dispose(self) -> None:
        self.engine.dispose()
