"""
Canonical field names for every entity.

The canonical schema is snake_case, matching the remote table columns.
Older clients and cache records use camelCase keys ("storeId",
"minStockLevel", "isRead"); they are mapped here, once, at the boundary
where they enter the system. Nothing past the boundary accepts both.
"""
from __future__ import annotations

import re
from typing import Any, Mapping

# camelCase names that do not map mechanically onto a canonical column.
FIELD_ALIASES: dict[str, str] = {
    "hashedPassword": "password_hash",
    "hashed_password": "password_hash",
    "lastPurchaseDate": "last_purchase_at",
    "returnDate": "returned_at",
}

# Keys that only exist in the local cache and never reach an entity.
SYNC_FIELDS = frozenset({"sync_status", "last_modified", "syncStatus", "lastModified"})

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def canonical_field(name: str) -> str:
    if name in FIELD_ALIASES:
        return FIELD_ALIASES[name]
    return camel_to_snake(name)


def to_canonical(record: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Return a copy of `record` with canonical keys.

    If a record carries both spellings of one field the canonical
    spelling wins.
    """
    if not record:
        return {}
    out: dict[str, Any] = {}
    explicit: set[str] = set()
    for key, value in record.items():
        canonical = canonical_field(key)
        if canonical == key:
            out[canonical] = value
            explicit.add(canonical)
        elif canonical not in explicit:
            out[canonical] = value
    return out


def strip_sync_fields(record: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in record.items() if k not in SYNC_FIELDS}
