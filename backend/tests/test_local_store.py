# Overview: Pytest coverage for the local cache store and its sync queue.

"""
Local cache store tests.

Each test opens its own in-memory cache, independent of the app.
"""

from datetime import timedelta

import pytest

from stockline.errors import LocalStoreError, RecordNotFoundError
from stockline.storage.local_store import (
    LocalCacheStore,
    SCHEMA_VERSION,
    SYNC_PENDING,
    SYNC_SYNCED,
    SYNC_ERROR,
    OP_CREATE,
    OP_UPDATE,
    OP_DELETE,
)
from stockline.time_utils import utcnow


@pytest.fixture
def store():
    cache = LocalCacheStore("sqlite:///:memory:")
    yield cache
    cache.dispose()


class TestRecords:
    def test_schema_version_recorded(self, store):
        assert store.schema_version == SCHEMA_VERSION

    def test_save_queues_create_and_marks_pending(self, store):
        store.save("users", {"id": "u-1", "email": "a@example.com"})

        assert store.get("users", "u-1") == {"id": "u-1", "email": "a@example.com"}
        assert store.get_sync_status("users", "u-1") == SYNC_PENDING

        ops = store.list_pending_operations()
        assert [(op.operation, op.table, op.entity_id) for op in ops] == [(OP_CREATE, "users", "u-1")]
        assert ops[0].data["email"] == "a@example.com"

    def test_save_strips_sync_fields_and_canonicalizes(self, store):
        store.save("users", {"id": "u-1", "storeId": "s-1", "syncStatus": "synced", "lastModified": "x"})

        record = store.get("users", "u-1")
        assert record == {"id": "u-1", "store_id": "s-1"}

    def test_save_requires_id(self, store):
        with pytest.raises(LocalStoreError):
            store.save("users", {"email": "a@example.com"})

    def test_unknown_collection_rejected(self, store):
        with pytest.raises(LocalStoreError):
            store.get("widgets", 1)

    def test_update_merges_and_queues(self, store):
        store.save("users", {"id": "u-1", "email": "a@example.com", "role": "staff"})
        merged = store.update("users", "u-1", {"role": "admin"})

        assert merged == {"id": "u-1", "email": "a@example.com", "role": "admin"}
        ops = store.list_pending_operations()
        assert [op.operation for op in ops] == [OP_CREATE, OP_UPDATE]
        assert ops[1].data["role"] == "admin"

    def test_update_missing_record_raises(self, store):
        with pytest.raises(RecordNotFoundError):
            store.update("users", "missing", {"role": "admin"})
        assert store.pending_count() == 0

    def test_delete_removes_record_and_queues(self, store):
        store.save("stores", {"id": "s-1", "name": "Main"})
        assert store.delete("stores", "s-1") is True

        assert store.get("stores", "s-1") is None
        assert store.list_pending_operations()[-1].operation == OP_DELETE

    def test_put_synced_does_not_queue(self, store):
        store.put_synced("products", {"id": 7, "name": "Cable", "quantity": 3})

        assert store.get("products", 7)["quantity"] == 3
        assert store.get_sync_status("products", 7) == SYNC_SYNCED
        assert store.pending_count() == 0

    def test_get_by_index(self, store):
        store.save("users", {"id": "u-1", "email": "a@example.com"})
        store.save("users", {"id": "u-2", "email": "b@example.com"})

        assert store.get_by_index("users", "email", "b@example.com")["id"] == "u-2"
        assert store.get_by_index("users", "email", "c@example.com") is None

    def test_mark_synced_and_error(self, store):
        store.save("users", {"id": "u-1"})
        store.mark_synced("users", "u-1")
        assert store.get_sync_status("users", "u-1") == SYNC_SYNCED
        store.mark_error("users", "u-1")
        assert store.get_sync_status("users", "u-1") == SYNC_ERROR


class TestQueue:
    def test_queue_keeps_insertion_order(self, store):
        store.save("users", {"id": "u-1"})
        store.save("stores", {"id": "s-1"})
        store.update("users", "u-1", {"role": "owner"})

        ops = store.list_pending_operations()
        assert [op.entity_id for op in ops] == ["u-1", "s-1", "u-1"]
        assert [op.id for op in ops] == sorted(op.id for op in ops)

    def test_due_before_skips_backed_off_entries(self, store):
        store.save("users", {"id": "u-1"})
        store.save("users", {"id": "u-2"})
        first = store.list_pending_operations()[0]
        store.record_failure(first.id, "boom", utcnow() + timedelta(minutes=5))

        due = store.list_pending_operations(due_before=utcnow())
        assert [op.entity_id for op in due] == ["u-2"]
        failed = store.get_operation(first.id)
        assert failed.attempts == 1
        assert failed.last_error == "boom"

    def test_dead_letter_and_requeue(self, store):
        store.save("users", {"id": "u-1"})
        op = store.list_pending_operations()[0]

        store.dead_letter(op.id, "gave up")
        assert store.pending_count() == 0
        assert store.dead_letter_count() == 1
        assert store.has_pending("users", "u-1") is True

        assert store.requeue(op.id) is True
        requeued = store.get_operation(op.id)
        assert requeued.attempts == 0
        assert requeued.next_attempt_at is None
        assert store.pending_count() == 1

    def test_requeue_ignores_live_entries(self, store):
        store.save("users", {"id": "u-1"})
        op = store.list_pending_operations()[0]
        assert store.requeue(op.id) is False

    def test_clear_operation(self, store):
        store.save("users", {"id": "u-1"})
        op = store.list_pending_operations()[0]
        store.clear_operation(op.id)
        assert store.has_pending("users", "u-1") is False

    def test_clear_keeps_schema(self, store):
        store.save("users", {"id": "u-1"})
        store.clear()
        assert store.get("users", "u-1") is None
        assert store.pending_count() == 0
        assert store.schema_version == SCHEMA_VERSION
