from stockline.storage.schema_mapping import canonical_field, strip_sync_fields, to_canonical


def test_camel_case_keys_are_mapped():
    assert to_canonical({"storeId": "s-1", "minStockLevel": 5, "isRead": True}) == {
        "store_id": "s-1",
        "min_stock_level": 5,
        "is_read": True,
    }


def test_aliases_take_precedence_over_mechanical_mapping():
    assert canonical_field("hashedPassword") == "password_hash"
    assert canonical_field("lastPurchaseDate") == "last_purchase_at"
    assert canonical_field("returnDate") == "returned_at"


def test_canonical_spelling_wins_when_both_present():
    assert to_canonical({"storeId": "legacy", "store_id": "canonical"}) == {"store_id": "canonical"}
    assert to_canonical({"store_id": "canonical", "storeId": "legacy"}) == {"store_id": "canonical"}


def test_empty_input():
    assert to_canonical(None) == {}
    assert to_canonical({}) == {}


def test_strip_sync_fields():
    record = {"id": 1, "sync_status": "pending", "lastModified": "2024-01-01T00:00:00Z"}
    assert strip_sync_fields(record) == {"id": 1}
