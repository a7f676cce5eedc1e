# Overview: Data adapter; one read/write surface per entity over the local cache and remote database.

"""
DataAdapter - the only way routes and services touch entity data.

WRITE POLICY (per table, OFFLINE_QUEUED_TABLES):
- queued: writes land in the local cache store and its sync queue; the
  SyncManager pushes them later. Reads check the local cache first, then the
  remote database, caching remote hits. Used for account entities (users,
  stores, subscriptions), whose ids are client-generated uuids.
- write_through: writes go to the remote database first and the result is
  mirrored into the local cache as synced. A remote failure returns None and
  writes nothing locally. Reads go remote first and fall back to the cached
  copy when the remote database is unreachable.

ERRORS: reads never raise; storage errors are logged and become None / [].
Caller errors (ValidationError, ConflictError, PlanLimitError,
TenantAccessError on writes) propagate.

MULTI-TENANT: tenant entities are scoped to the store of the current
principal. No principal, or a principal without a store, sees nothing.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Iterable, Optional

from ..errors import LocalStoreError, RecordNotFoundError, RemoteServiceError, TenantAccessError
from ..models import Customer, Payment, Product, Return, ReturnItem, Sale, SaleItem, StoreCredit
from ..models.tenancy import new_uuid
from ..storage.local_store import ALL_COLLECTIONS
from ..storage.schema_mapping import to_canonical
from ..time_utils import coerce_datetime, utcnow
from ..validation import (
    ConflictError,
    ValidationError,
    enforce_rules_return,
    normalize_payments,
    normalize_return_items,
    normalize_sale_items,
)
from . import subscription_service
from .tenant_service import current_principal

logger = logging.getLogger(__name__)

POLICY_QUEUED = "queued"
POLICY_WRITE_THROUGH = "write_through"

SALE_STATUSES = {"completed", "returned", "cancelled"}
SALE_EDITABLE_FIELDS = {"status", "notes"}
RETURN_EDITABLE_FIELDS = {
    "status",
    "reason",
    "reason_details",
    "refund_method",
    "refund_amount_cents",
    "processed_by",
    "notes",
}


def _as_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None


def _as_datetime(value, field: str):
    try:
        return coerce_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime") from None


class DataAdapter:
    def __init__(
        self,
        local_store,
        remote,
        *,
        queued_tables: Iterable[str] = ("users", "stores", "subscriptions"),
        notifications=None,
        principal_resolver: Optional[Callable[[], Optional[dict]]] = None,
    ):
        self.local_store = local_store
        self.remote = remote
        self.queued_tables = frozenset(queued_tables)
        self.notifications = notifications
        self.principal_resolver = principal_resolver or current_principal

    def write_policy(self, table: str) -> str:
        return POLICY_QUEUED if table in self.queued_tables else POLICY_WRITE_THROUGH

    # ------------------------------------------------------------------
    # Tenant scope
    # ------------------------------------------------------------------

    def current_store_id(self) -> Optional[str]:
        principal = self.principal_resolver()
        if not principal:
            return None
        return principal.get("store_id") or None

    def _require_store_id(self) -> str:
        store_id = self.current_store_id()
        if not store_id:
            raise TenantAccessError("No store is bound to the current user")
        return store_id

    # ------------------------------------------------------------------
    # Local cache helpers
    # ------------------------------------------------------------------

    def _mirror(self, table: str, record: Optional[dict]) -> None:
        if record is None or table not in ALL_COLLECTIONS:
            return
        try:
            self.local_store.put_synced(table, record)
        except LocalStoreError:
            logger.warning("Failed to cache %s/%s locally", table, record.get("id"), exc_info=True)

    def _forget(self, table: str, entity_id) -> None:
        if table not in ALL_COLLECTIONS:
            return
        try:
            self.local_store.evict(table, entity_id)
        except LocalStoreError:
            logger.warning("Failed to evict %s/%s from local cache", table, entity_id, exc_info=True)

    def _cached(self, table: str, entity_id) -> Optional[dict]:
        if table not in ALL_COLLECTIONS:
            return None
        try:
            return self.local_store.get(table, entity_id)
        except LocalStoreError:
            logger.warning("Local cache read of %s/%s failed", table, entity_id, exc_info=True)
            return None

    def _cached_where(self, table: str, filters: dict) -> list[dict]:
        if table not in ALL_COLLECTIONS:
            return []
        try:
            records = self.local_store.all(table)
        except LocalStoreError:
            logger.warning("Local cache scan of %s failed", table, exc_info=True)
            return []
        return [r for r in records if all(r.get(k) == v for k, v in filters.items())]

    # ------------------------------------------------------------------
    # Generic reads
    # ------------------------------------------------------------------

    def _get(self, table: str, entity_id) -> Optional[dict]:
        if entity_id is None:
            return None
        if self.write_policy(table) == POLICY_QUEUED:
            cached = self._cached(table, entity_id)
            if cached is not None:
                return cached
            try:
                record = self.remote.get(table, entity_id)
            except RemoteServiceError:
                logger.warning("Remote read of %s/%s failed", table, entity_id, exc_info=True)
                return None
            self._mirror(table, record)
            return record

        try:
            record = self.remote.get(table, entity_id)
        except RemoteServiceError:
            logger.warning("Remote read of %s/%s failed; serving cached copy", table, entity_id, exc_info=True)
            return self._cached(table, entity_id)
        self._mirror(table, record)
        return record

    def _find(self, table: str, field: str, value) -> Optional[dict]:
        if value is None:
            return None
        if self.write_policy(table) == POLICY_QUEUED:
            cached = self._cached_where(table, {field: value})
            if cached:
                return cached[0]
            try:
                record = self.remote.find_one(table, **{field: value})
            except RemoteServiceError:
                logger.warning("Remote lookup of %s by %s failed", table, field, exc_info=True)
                return None
            self._mirror(table, record)
            return record

        try:
            record = self.remote.find_one(table, **{field: value})
        except RemoteServiceError:
            logger.warning("Remote lookup of %s by %s failed; serving cached copy", table, field, exc_info=True)
            cached = self._cached_where(table, {field: value})
            return cached[0] if cached else None
        self._mirror(table, record)
        return record

    def _list(self, table: str, filters: dict, *, order_by: Optional[str] = None, descending: bool = False) -> list[dict]:
        try:
            records = self.remote.select(table, filters, order_by=order_by, descending=descending)
        except RemoteServiceError:
            logger.warning("Remote listing of %s failed; serving cached copies", table, exc_info=True)
            return self._cached_where(table, filters)
        for record in records:
            self._mirror(table, record)
        return records

    def _scoped_get(self, table: str, entity_id) -> Optional[dict]:
        store_id = self.current_store_id()
        if not store_id:
            return None
        record = self._get(table, entity_id)
        if record is None or record.get("store_id") != store_id:
            return None
        return record

    def _scoped_list(self, table: str, filters: Optional[dict] = None, **kwargs) -> list[dict]:
        store_id = self.current_store_id()
        if not store_id:
            return []
        return self._list(table, {**(filters or {}), "store_id": store_id}, **kwargs)

    # ------------------------------------------------------------------
    # Generic writes (policy-driven)
    # ------------------------------------------------------------------

    def _save(self, table: str, entity: dict) -> Optional[dict]:
        entity = to_canonical(entity)
        if self.write_policy(table) == POLICY_QUEUED:
            if entity.get("id") is None:
                entity["id"] = new_uuid()
            try:
                return self.local_store.save(table, entity)
            except LocalStoreError:
                logger.exception("Failed to queue %s/%s", table, entity.get("id"))
                return None

        try:
            if entity.get("id") is not None:
                record = self.remote.upsert(table, entity)
            else:
                record = self.remote.insert(table, entity)
        except RemoteServiceError:
            logger.exception("Remote write of %s failed", table)
            return None
        self._mirror(table, record)
        return record

    def _update(self, table: str, entity_id, partial: dict) -> Optional[dict]:
        partial = to_canonical(partial)
        partial.pop("id", None)
        if self.write_policy(table) == POLICY_QUEUED:
            try:
                return self.local_store.update(table, entity_id, partial)
            except RecordNotFoundError:
                pass
            except LocalStoreError:
                logger.exception("Failed to queue update of %s/%s", table, entity_id)
                return None
            # Not cached yet: pull the remote copy, then update locally.
            try:
                record = self.remote.get(table, entity_id)
            except RemoteServiceError:
                logger.warning("Remote read of %s/%s failed", table, entity_id, exc_info=True)
                return None
            if record is None:
                return None
            self._mirror(table, record)
            try:
                return self.local_store.update(table, entity_id, partial)
            except LocalStoreError:
                logger.exception("Failed to queue update of %s/%s", table, entity_id)
                return None

        try:
            record = self.remote.update(table, entity_id, partial)
        except RemoteServiceError:
            logger.exception("Remote update of %s/%s failed", table, entity_id)
            return None
        self._mirror(table, record)
        return record

    def _delete(self, table: str, entity_id) -> bool:
        if self.write_policy(table) == POLICY_QUEUED:
            try:
                self.local_store.delete(table, entity_id)
            except LocalStoreError:
                logger.exception("Failed to queue delete of %s/%s", table, entity_id)
                return False
            return True

        try:
            deleted = self.remote.delete(table, entity_id)
        except RemoteServiceError:
            logger.exception("Remote delete of %s/%s failed", table, entity_id)
            return False
        self._forget(table, entity_id)
        return deleted

    def _reconcile(self, store_id: str) -> None:
        if self.notifications is None:
            return
        try:
            self.notifications.reconcile(store_id)
        except Exception:
            logger.exception("Notification reconciliation failed for store %s", store_id)

    # ------------------------------------------------------------------
    # Users, stores, subscriptions
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[dict]:
        return self._get("users", user_id)

    def get_user_by_email(self, email: str) -> Optional[dict]:
        return self._find("users", "email", (email or "").strip().lower() or None)

    def get_user_by_username(self, username: str) -> Optional[dict]:
        return self._find("users", "username", (username or "").strip() or None)

    def save_user(self, user: dict) -> Optional[dict]:
        user = to_canonical(user)
        if user.get("email"):
            user["email"] = user["email"].strip().lower()
        return self._save("users", user)

    def update_user(self, user_id: str, partial: dict) -> Optional[dict]:
        return self._update("users", user_id, partial)

    def delete_user(self, user_id: str) -> bool:
        return self._delete("users", user_id)

    def get_store(self, store_id: str) -> Optional[dict]:
        return self._get("stores", store_id)

    def save_store(self, store: dict) -> Optional[dict]:
        return self._save("stores", store)

    def update_store(self, store_id: str, partial: dict) -> Optional[dict]:
        return self._update("stores", store_id, partial)

    def delete_store(self, store_id: str) -> bool:
        return self._delete("stores", store_id)

    def get_subscription(self, subscription_id: str) -> Optional[dict]:
        return self._get("subscriptions", subscription_id)

    def get_subscription_by_user(self, user_id: str) -> Optional[dict]:
        return self._find("subscriptions", "user_id", user_id)

    def get_subscription_by_store(self, store_id: str) -> Optional[dict]:
        return self._find("subscriptions", "store_id", store_id)

    def save_subscription(self, subscription: dict) -> Optional[dict]:
        return self._save("subscriptions", subscription)

    def update_subscription(self, subscription_id: str, partial: dict) -> Optional[dict]:
        return self._update("subscriptions", subscription_id, partial)

    def delete_subscription(self, subscription_id: str) -> bool:
        return self._delete("subscriptions", subscription_id)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def get_products(self) -> list[dict]:
        return self._scoped_list("products", order_by="name")

    def get_product(self, product_id: int) -> Optional[dict]:
        return self._scoped_get("products", product_id)

    def _ensure_unique_serial(self, serial_number: Optional[str], exclude_id=None) -> None:
        if not serial_number:
            return
        existing = self.remote.find_one("products", serial_number=serial_number)
        if existing is not None and existing["id"] != exclude_id:
            raise ConflictError(f"serial_number {serial_number} already exists")

    def _owned(self, table: str, entity_id, store_id: str) -> dict:
        record = self.remote.get(table, entity_id)
        if record is None or record.get("store_id") != store_id:
            raise TenantAccessError(f"{table[:-1].capitalize()} not found")
        return record

    def add_product(self, data: dict) -> Optional[dict]:
        """
        Create a product in the current store.

        Raises PlanLimitError when the store is at its plan's product limit,
        ConflictError on a duplicate serial number.
        """
        store_id = self._require_store_id()
        data = to_canonical(data)
        data.pop("id", None)
        data["store_id"] = store_id
        plan = subscription_service.plan_for_store(self, store_id)
        try:
            subscription_service.check_limit(plan, "products", self.remote.count("products", store_id=store_id))
            self._ensure_unique_serial(data.get("serial_number"))
            record = self.remote.insert("products", data)
        except RemoteServiceError:
            logger.exception("Failed to add product for store %s", store_id)
            return None
        self._mirror("products", record)
        self._reconcile(store_id)
        return record

    def update_product(self, product_id: int, partial: dict) -> Optional[dict]:
        store_id = self._require_store_id()
        partial = to_canonical(partial)
        partial.pop("store_id", None)
        try:
            existing = self._owned("products", product_id, store_id)
            if "serial_number" in partial:
                self._ensure_unique_serial(partial.get("serial_number"), exclude_id=existing["id"])
            record = self.remote.update("products", product_id, partial)
        except RemoteServiceError:
            logger.exception("Failed to update product %s", product_id)
            return None
        self._mirror("products", record)
        self._reconcile(store_id)
        return record

    def delete_product(self, product_id: int) -> bool:
        """Delete a product and its low-stock notifications. Refused once it has sales."""
        store_id = self._require_store_id()
        try:
            existing = self._owned("products", product_id, store_id)
            if self.remote.count("sale_items", product_id=existing["id"]):
                raise ConflictError("Product has sales history; mark it discontinued instead")
            with self.remote.transaction():
                self.remote.delete_where(
                    "notifications",
                    store_id=store_id,
                    type="low_stock",
                    related_item_id=existing["id"],
                )
                self.remote.delete("products", existing["id"])
        except RemoteServiceError:
            logger.exception("Failed to delete product %s", product_id)
            return False
        self._forget("products", product_id)
        return True

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def get_customers(self) -> list[dict]:
        return self._scoped_list("customers", order_by="name")

    def get_customer(self, customer_id: int) -> Optional[dict]:
        return self._scoped_get("customers", customer_id)

    def add_customer(self, data: dict) -> Optional[dict]:
        store_id = self._require_store_id()
        data = to_canonical(data)
        data.pop("id", None)
        data["store_id"] = store_id
        return self._save("customers", data)

    def update_customer(self, customer_id: int, partial: dict) -> Optional[dict]:
        store_id = self._require_store_id()
        partial = to_canonical(partial)
        partial.pop("store_id", None)
        try:
            self._owned("customers", customer_id, store_id)
        except RemoteServiceError:
            logger.exception("Failed to load customer %s", customer_id)
            return None
        return self._update("customers", customer_id, partial)

    def delete_customer(self, customer_id: int) -> bool:
        store_id = self._require_store_id()
        try:
            existing = self._owned("customers", customer_id, store_id)
            if self.remote.count("sales", customer_id=existing["id"]):
                raise ConflictError("Customer has sales history and cannot be deleted")
        except RemoteServiceError:
            logger.exception("Failed to load customer %s", customer_id)
            return False
        return self._delete("customers", customer_id)

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def get_sales(self) -> list[dict]:
        return self._scoped_list("sales", order_by="sold_at", descending=True)

    def get_sale(self, sale_id: int) -> Optional[dict]:
        return self._scoped_get("sales", sale_id)

    def get_sales_by_customer(self, customer_id: int) -> list[dict]:
        return self._scoped_list("sales", {"customer_id": customer_id}, order_by="sold_at", descending=True)

    def add_sale(self, data: dict) -> Optional[dict]:
        """
        Record a completed sale.

        Decrements stock for every line and updates the customer's purchase
        totals in the same transaction. Raises ConflictError when a line
        asks for more than is on hand.
        """
        store_id = self._require_store_id()
        data = to_canonical(data)
        items = normalize_sale_items(data.get("items"))
        payments = normalize_payments(data.get("payments"))
        sold_at = _as_datetime(data.get("sold_at"), "sold_at") or utcnow()
        tax_cents = _as_int(data.get("tax_cents") or 0, "tax_cents")
        discount_cents = _as_int(data.get("discount_cents") or 0, "discount_cents")
        customer_id = data.get("customer_id")
        if customer_id is not None:
            customer_id = _as_int(customer_id, "customer_id")

        try:
            with self.remote.transaction() as session:
                customer = None
                if customer_id is not None:
                    customer = session.get(Customer, customer_id)
                    if customer is None or customer.store_id != store_id:
                        raise TenantAccessError("Customer not found")

                sale = Sale(
                    store_id=store_id,
                    customer_id=customer_id,
                    sold_at=sold_at,
                    tax_cents=tax_cents,
                    discount_cents=discount_cents,
                    status="completed",
                    notes=data.get("notes"),
                )
                products = []
                for item in items:
                    product = session.get(Product, item["product_id"])
                    if product is None or product.store_id != store_id:
                        raise TenantAccessError(f"Product {item['product_id']} not found")
                    if product.quantity < item["quantity"]:
                        raise ConflictError(
                            f"Insufficient stock for {product.name}: {product.quantity} on hand, {item['quantity']} requested"
                        )
                    product.quantity -= item["quantity"]
                    products.append(product)
                    sale.items.append(SaleItem(**item))
                for payment in payments:
                    sale.payments.append(Payment(paid_at=sold_at, **payment))

                if data.get("total_cents") is not None:
                    sale.total_cents = _as_int(data["total_cents"], "total_cents")
                else:
                    sale.total_cents = sum(i["total_cents"] for i in items) + tax_cents - discount_cents

                if customer is not None:
                    customer.total_purchases = (customer.total_purchases or 0) + 1
                    customer.total_spent_cents = (customer.total_spent_cents or 0) + sale.total_cents
                    customer.last_purchase_at = sold_at

                session.add(sale)
                session.flush()
                record = sale.to_dict()
                product_records = [p.to_dict() for p in products]
                customer_record = customer.to_dict() if customer is not None else None
        except RemoteServiceError:
            logger.exception("Failed to record sale for store %s", store_id)
            return None

        self._mirror("sales", record)
        for payment in record["payments"]:
            self._mirror("payments", payment)
        for product in product_records:
            self._mirror("products", product)
        self._mirror("customers", customer_record)
        self._reconcile(store_id)
        return record

    def update_sale(self, sale_id: int, partial: dict) -> Optional[dict]:
        store_id = self._require_store_id()
        partial = {k: v for k, v in to_canonical(partial).items() if k in SALE_EDITABLE_FIELDS}
        if partial.get("status") is not None and partial["status"] not in SALE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(sorted(SALE_STATUSES))}")
        try:
            self._owned("sales", sale_id, store_id)
            record = self.remote.update("sales", sale_id, partial)
        except RemoteServiceError:
            logger.exception("Failed to update sale %s", sale_id)
            return None
        self._mirror("sales", record)
        return record

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------

    def get_returns(self) -> list[dict]:
        return self._scoped_list("returns", order_by="returned_at", descending=True)

    def get_return(self, return_id: int) -> Optional[dict]:
        return self._scoped_get("returns", return_id)

    def get_returns_by_sale(self, sale_id: int) -> list[dict]:
        return self._scoped_list("returns", {"original_sale_id": sale_id}, order_by="returned_at", descending=True)

    def get_store_credits(self, customer_id: Optional[int] = None) -> list[dict]:
        filters = {"customer_id": customer_id} if customer_id is not None else None
        return self._scoped_list("store_credits", filters, order_by="created_at", descending=True)

    @staticmethod
    def _restock(session, return_doc) -> list:
        """Put returned units back on hand for items flagged return_to_inventory."""
        restocked = []
        for item in return_doc.items:
            if not item.return_to_inventory:
                continue
            product = session.get(Product, item.product_id)
            if product is None:
                continue
            product.quantity = (product.quantity or 0) + item.returned_quantity
            restocked.append(product)
        return restocked

    @staticmethod
    def _issue_store_credit(session, return_doc) -> Optional[StoreCredit]:
        existing = session.query(StoreCredit).filter_by(return_id=return_doc.id).first()
        if existing is not None:
            return None
        credit = StoreCredit(
            store_id=return_doc.store_id,
            customer_id=return_doc.customer_id,
            return_id=return_doc.id,
            amount_cents=return_doc.refund_amount_cents,
            balance_cents=return_doc.refund_amount_cents,
            reference_code=f"SC-{uuid.uuid4().hex[:10].upper()}",
            status="active",
        )
        session.add(credit)
        return credit

    def _complete_return(self, session, return_doc) -> list:
        restocked = self._restock(session, return_doc)
        if return_doc.return_type == "store_credit":
            self._issue_store_credit(session, return_doc)
        return restocked

    def add_return(self, data: dict) -> Optional[dict]:
        """
        Record a return against one of the store's sales.

        A return created as completed restocks its items right away and, for
        store_credit returns, issues the store credit.
        """
        store_id = self._require_store_id()
        data = to_canonical(data)
        items = normalize_return_items(data.get("items"))
        header = {
            "status": data.get("status") or "pending",
            "return_type": data.get("return_type") or "refund",
            "reason": data.get("reason") or "other",
            "refund_method": data.get("refund_method") or "original_payment",
        }
        if data.get("refund_amount_cents") is not None:
            header["refund_amount_cents"] = _as_int(data["refund_amount_cents"], "refund_amount_cents")
        enforce_rules_return(header)
        if data.get("original_sale_id") is None:
            raise ValidationError("Missing required fields: original_sale_id")
        sale_id = _as_int(data["original_sale_id"], "original_sale_id")
        returned_at = _as_datetime(data.get("returned_at"), "returned_at") or utcnow()
        principal = self.principal_resolver() or {}

        try:
            with self.remote.transaction() as session:
                sale = session.get(Sale, sale_id)
                if sale is None or sale.store_id != store_id:
                    raise TenantAccessError("Sale not found")
                customer_id = data.get("customer_id")
                customer_id = _as_int(customer_id, "customer_id") if customer_id is not None else sale.customer_id
                if header["return_type"] == "store_credit" and customer_id is None:
                    raise ValidationError("store_credit returns require a customer")

                return_doc = Return(
                    store_id=store_id,
                    original_sale_id=sale.id,
                    customer_id=customer_id,
                    returned_at=returned_at,
                    status=header["status"],
                    return_type=header["return_type"],
                    reason=header["reason"],
                    reason_details=data.get("reason_details"),
                    refund_method=header["refund_method"],
                    processed_by=data.get("processed_by") or principal.get("id"),
                    notes=data.get("notes"),
                )
                for item in items:
                    product = session.get(Product, item["product_id"])
                    if product is None or product.store_id != store_id:
                        raise TenantAccessError(f"Product {item['product_id']} not found")
                    return_doc.items.append(ReturnItem(**item))
                return_doc.refund_amount_cents = header.get(
                    "refund_amount_cents",
                    sum(i["refund_amount_cents"] for i in items),
                )
                session.add(return_doc)
                session.flush()

                restocked = []
                if return_doc.status == "completed":
                    restocked = self._complete_return(session, return_doc)
                session.flush()
                record = return_doc.to_dict()
                product_records = [p.to_dict() for p in restocked]
        except RemoteServiceError:
            logger.exception("Failed to record return for store %s", store_id)
            return None

        self._mirror("returns", record)
        for product in product_records:
            self._mirror("products", product)
        if product_records:
            self._reconcile(store_id)
        return record

    def update_return(self, return_id: int, partial: dict) -> Optional[dict]:
        """Update a return; the transition to completed restocks and issues credit."""
        store_id = self._require_store_id()
        partial = {k: v for k, v in to_canonical(partial).items() if k in RETURN_EDITABLE_FIELDS}
        if partial.get("refund_amount_cents") is not None:
            partial["refund_amount_cents"] = _as_int(partial["refund_amount_cents"], "refund_amount_cents")
        enforce_rules_return(partial)

        try:
            with self.remote.transaction() as session:
                return_doc = session.get(Return, _as_int(return_id, "return_id"))
                if return_doc is None or return_doc.store_id != store_id:
                    raise TenantAccessError("Return not found")
                was_completed = return_doc.status == "completed"
                for key, value in partial.items():
                    setattr(return_doc, key, value)
                session.flush()

                restocked = []
                if not was_completed and return_doc.status == "completed":
                    restocked = self._complete_return(session, return_doc)
                session.flush()
                record = return_doc.to_dict()
                product_records = [p.to_dict() for p in restocked]
        except RemoteServiceError:
            logger.exception("Failed to update return %s", return_id)
            return None

        self._mirror("returns", record)
        for product in product_records:
            self._mirror("products", product)
        if product_records:
            self._reconcile(store_id)
        return record
