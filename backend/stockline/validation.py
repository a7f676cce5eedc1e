from __future__ import annotations
from datetime import datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .storage.schema_mapping import to_canonical
from .time_utils import parse_iso_datetime


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

PAYMENT_METHODS = {"cash", "card", "transfer", "other"}
RETURN_STATUSES = {"pending", "approved", "completed", "rejected"}
RETURN_TYPES = {"refund", "exchange", "store_credit"}
RETURN_REASONS = {"defective", "not_as_described", "unwanted", "wrong_item", "damaged", "other"}
REFUND_METHODS = {"original_payment", "cash", "store_credit", "bank_transfer"}
PRODUCT_CONDITIONS = {"new", "pre-owned", "refurbished"}
PRODUCT_STATUSES = {"active", "discontinued", "out_of_stock"}


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate serial number)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    Keys are mapped to the canonical snake_case schema first, so legacy
    camelCase payloads ("minStockLevel") are accepted.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    payload = to_canonical(payload)

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _require_cents(patch: dict, key: str) -> None:
    if key in patch and patch[key] is not None:
        value = patch[key]
        if value < 0:
            raise ValidationError(f"{key} must be >= 0")
        if value > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _require_cents(patch, "price_cents")
    _require_cents(patch, "cost_cents")

    if patch.get("quantity") is not None and patch["quantity"] < 0:
        raise ValidationError("quantity must be >= 0")
    if patch.get("min_stock_level") is not None and patch["min_stock_level"] < 0:
        raise ValidationError("min_stock_level must be >= 0")
    if patch.get("condition") is not None and patch["condition"] not in PRODUCT_CONDITIONS:
        raise ValidationError(f"condition must be one of: {', '.join(sorted(PRODUCT_CONDITIONS))}")
    if patch.get("status") is not None and patch["status"] not in PRODUCT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(PRODUCT_STATUSES))}")


def _require_positive_int(value, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    if value <= 0:
        raise ValidationError(f"{key} must be > 0")
    return value


def normalize_sale_items(items) -> list[dict]:
    """Validate sale line items; totals default to price * quantity."""
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    normalized = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("each item must be an object")
        item = to_canonical(raw)
        product_id = _require_positive_int(item.get("product_id"), "product_id")
        quantity = _require_positive_int(item.get("quantity"), "quantity")
        price_cents = item.get("price_cents")
        if isinstance(price_cents, bool) or not isinstance(price_cents, int):
            raise ValidationError("price_cents must be an integer")
        _require_cents({"price_cents": price_cents}, "price_cents")
        discount_cents = int(item.get("discount_cents") or 0)
        total_cents = item.get("total_cents")
        if total_cents is None:
            total_cents = price_cents * quantity - discount_cents
        normalized.append({
            "product_id": product_id,
            "quantity": quantity,
            "price_cents": price_cents,
            "discount_cents": discount_cents,
            "total_cents": int(total_cents),
            "serial_number": item.get("serial_number"),
        })
    return normalized


def normalize_payments(payments) -> list[dict]:
    if payments is None:
        return []
    if not isinstance(payments, list):
        raise ValidationError("payments must be a list")

    normalized = []
    for raw in payments:
        payment = to_canonical(raw) if isinstance(raw, dict) else {}
        method = (payment.get("method") or "").lower()
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"payment method must be one of: {', '.join(sorted(PAYMENT_METHODS))}")
        amount = _require_positive_int(payment.get("amount_cents"), "amount_cents")
        normalized.append({
            "method": method,
            "amount_cents": amount,
            "reference": payment.get("reference"),
        })
    return normalized


def enforce_rules_return(patch: dict) -> None:
    if patch.get("status") is not None and patch["status"] not in RETURN_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(RETURN_STATUSES))}")
    if patch.get("return_type") is not None and patch["return_type"] not in RETURN_TYPES:
        raise ValidationError(f"return_type must be one of: {', '.join(sorted(RETURN_TYPES))}")
    if patch.get("reason") is not None and patch["reason"] not in RETURN_REASONS:
        raise ValidationError(f"reason must be one of: {', '.join(sorted(RETURN_REASONS))}")
    if patch.get("refund_method") is not None and patch["refund_method"] not in REFUND_METHODS:
        raise ValidationError(f"refund_method must be one of: {', '.join(sorted(REFUND_METHODS))}")
    _require_cents(patch, "refund_amount_cents")


def normalize_return_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    normalized = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("each item must be an object")
        item = to_canonical(raw)
        product_id = _require_positive_int(item.get("product_id"), "product_id")
        returned = _require_positive_int(item.get("returned_quantity", item.get("quantity")), "returned_quantity")
        normalized.append({
            "product_id": product_id,
            "original_sale_item_id": item.get("original_sale_item_id"),
            "quantity": int(item.get("quantity") or returned),
            "returned_quantity": returned,
            "price_cents": int(item.get("price_cents") or 0),
            "refund_amount_cents": int(item.get("refund_amount_cents") or 0),
            "condition": item.get("condition") or "good",
            "return_to_inventory": bool(item.get("return_to_inventory", True)),
            "restock_fee_cents": int(item.get("restock_fee_cents") or 0),
        })
    return normalized
