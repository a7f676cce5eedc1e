# Overview: Typed query interface over the remote relational database (source of truth).

"""
RemoteDataService - table-level access to the remote database.

Tables are addressed by name ("users", "products", ...) so the sync manager
can replay queue entries without knowing the models. Records go in and come
out as plain dicts in the canonical snake_case schema.

Every write runs inside transaction(). Nested transaction() blocks join the
outermost one; only the outermost block commits or rolls back. Database
errors surface as RemoteServiceError.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import DateTime, Integer, text
from sqlalchemy.exc import SQLAlchemyError

from ..errors import RemoteServiceError, UnknownTableError
from ..models import (
    Customer,
    Notification,
    Payment,
    Product,
    Return,
    ReturnItem,
    Sale,
    SaleItem,
    SessionToken,
    Store,
    StoreCredit,
    Subscription,
    User,
)
from ..storage.schema_mapping import strip_sync_fields, to_canonical
from ..time_utils import coerce_datetime

logger = logging.getLogger(__name__)

TABLES = {
    "users": User,
    "stores": Store,
    "subscriptions": Subscription,
    "products": Product,
    "customers": Customer,
    "sales": Sale,
    "sale_items": SaleItem,
    "payments": Payment,
    "returns": Return,
    "return_items": ReturnItem,
    "store_credits": StoreCredit,
    "notifications": Notification,
    "session_tokens": SessionToken,
}

# Server-managed columns; a replayed snapshot must not overwrite them.
_READ_ONLY_COLUMNS = {"created_at", "updated_at"}


class RemoteDataService:
    """
    Usage:
        remote = RemoteDataService(db)
        remote.upsert("users", {"id": "u-1", "email": "a@b.c", ...})
        remote.select("products", {"store_id": store_id})
    """

    def __init__(self, db):
        self.db = db
        self._local = threading.local()

    @property
    def session(self):
        return self.db.session

    # ------------------------------------------------------------------
    # Table metadata
    # ------------------------------------------------------------------

    @staticmethod
    def model_for(table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise UnknownTableError(f"Unknown table: {table}") from None

    @staticmethod
    def _columns(model) -> dict[str, Any]:
        return {c.key: c for c in model.__mapper__.columns}

    def _coerce_pk(self, model, entity_id):
        pk = model.__mapper__.primary_key[0]
        if isinstance(pk.type, Integer) and isinstance(entity_id, str):
            try:
                return int(entity_id)
            except ValueError:
                raise RemoteServiceError(f"Invalid id for {model.__tablename__}: {entity_id!r}") from None
        return entity_id

    def _column_values(self, model, values: dict, *, include_pk: bool = True) -> dict:
        """Keep only known columns; parse ISO strings for datetime columns."""
        columns = self._columns(model)
        pk_name = model.__mapper__.primary_key[0].key
        cleaned = {}
        for key, value in to_canonical(strip_sync_fields(values)).items():
            column = columns.get(key)
            if column is None or key in _READ_ONLY_COLUMNS:
                continue
            if key == pk_name:
                if not include_pk:
                    continue
                value = self._coerce_pk(model, value) if value is not None else None
            elif isinstance(column.type, DateTime) and value is not None:
                try:
                    value = coerce_datetime(value)
                except ValueError:
                    raise RemoteServiceError(f"{key} is not an ISO-8601 datetime") from None
            cleaned[key] = value
        return cleaned

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Yield the session; commit on outermost exit, roll back on error."""
        depth = getattr(self._local, "depth", 0)
        self._local.depth = depth + 1
        try:
            yield self.session
            if depth == 0:
                self.session.commit()
        except SQLAlchemyError as exc:
            if depth == 0:
                self.session.rollback()
            raise RemoteServiceError(f"Remote database error: {exc}") from exc
        except Exception:
            if depth == 0:
                self.session.rollback()
            raise
        finally:
            self._local.depth = depth

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_instance(self, table: str, entity_id):
        model = self.model_for(table)
        try:
            return self.session.get(model, self._coerce_pk(model, entity_id))
        except SQLAlchemyError as exc:
            raise RemoteServiceError(f"Failed to read {table}/{entity_id}") from exc

    def get(self, table: str, entity_id) -> Optional[dict]:
        instance = self.get_instance(table, entity_id)
        return instance.to_dict() if instance is not None else None

    def select(
        self,
        table: str,
        filters: Optional[dict] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """Rows matching every equality filter, as dicts."""
        model = self.model_for(table)
        columns = self._columns(model)
        query = self.session.query(model)
        for key, value in (filters or {}).items():
            if key not in columns:
                raise RemoteServiceError(f"Unknown column {table}.{key}")
            query = query.filter(getattr(model, key) == value)
        order_column = getattr(model, order_by or model.__mapper__.primary_key[0].key)
        query = query.order_by(order_column.desc() if descending else order_column)
        if limit is not None:
            query = query.limit(limit)
        try:
            return [row.to_dict() for row in query.all()]
        except SQLAlchemyError as exc:
            raise RemoteServiceError(f"Failed to query {table}") from exc

    def find_one(self, table: str, **filters) -> Optional[dict]:
        rows = self.select(table, filters, limit=1)
        return rows[0] if rows else None

    def count(self, table: str, **filters) -> int:
        model = self.model_for(table)
        query = self.session.query(model)
        for key, value in filters.items():
            query = query.filter(getattr(model, key) == value)
        try:
            return query.count()
        except SQLAlchemyError as exc:
            raise RemoteServiceError(f"Failed to count {table}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, table: str, values: dict) -> dict:
        model = self.model_for(table)
        with self.transaction() as session:
            instance = model(**self._column_values(model, values))
            session.add(instance)
            session.flush()
            result = instance.to_dict()
        return result

    def update(self, table: str, entity_id, values: dict) -> Optional[dict]:
        """Apply `values` to an existing row. Returns None when the row is missing."""
        model = self.model_for(table)
        with self.transaction() as session:
            instance = session.get(model, self._coerce_pk(model, entity_id))
            if instance is None:
                return None
            for key, value in self._column_values(model, values, include_pk=False).items():
                setattr(instance, key, value)
            session.flush()
            result = instance.to_dict()
        return result

    def upsert(self, table: str, values: dict) -> dict:
        """Insert, or overwrite the row with the same primary key."""
        model = self.model_for(table)
        pk_name = model.__mapper__.primary_key[0].key
        entity_id = to_canonical(values).get(pk_name)
        with self.transaction():
            if entity_id is not None and self.get_instance(table, entity_id) is not None:
                return self.update(table, entity_id, values)
            return self.insert(table, values)

    def delete(self, table: str, entity_id) -> bool:
        """Delete by primary key. Deleting a missing row is not an error."""
        model = self.model_for(table)
        with self.transaction() as session:
            instance = session.get(model, self._coerce_pk(model, entity_id))
            if instance is None:
                return False
            session.delete(instance)
        return True

    def delete_where(self, table: str, **filters) -> int:
        model = self.model_for(table)
        with self.transaction() as session:
            query = session.query(model)
            for key, value in filters.items():
                query = query.filter(getattr(model, key) == value)
            deleted = query.delete(synchronize_session=False)
        return deleted

    def ping(self) -> bool:
        try:
            self.session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.warning("Remote database ping failed", exc_info=True)
            self.session.rollback()
            return False
