# Overview: Pytest coverage for the sync manager (queue draining, backoff, dead letters).

"""
Sync Manager Tests

Verifies:
1. Queued writes reach the remote database and are marked synced
2. Failed pushes back off exponentially, then dead-letter
3. Entries of one record are pushed in queue order; a failing entry holds
   back later entries of the same record but not of other records
4. Nothing is attempted while offline; coming back online drains the queue
5. The background loop runs a pass on start, stops on demand and follows
   the online/offline switch
"""

import time
from datetime import timedelta

import pytest

from stockline.errors import RemoteServiceError
from stockline.extensions import get_local_store, get_remote, get_sync_manager
from stockline.services.sync_manager import SyncManager
from stockline.storage.local_store import LocalCacheStore, SYNC_ERROR, SYNC_PENDING, SYNC_SYNCED
from stockline.time_utils import utcnow


class RecordingRemote:
    """Remote stand-in that records calls and fails on demand."""

    def __init__(self, fail_when=None):
        self.calls = []
        self.rows = {}
        self.fail_when = fail_when or (lambda op, table, data: False)

    def upsert(self, table, data):
        self.calls.append(("upsert", table, data["id"]))
        if self.fail_when("upsert", table, data):
            raise RemoteServiceError("connection refused")
        self.rows[(table, str(data["id"]))] = dict(data)
        return data

    def delete(self, table, entity_id):
        self.calls.append(("delete", table, entity_id))
        if self.fail_when("delete", table, {"id": entity_id}):
            raise RemoteServiceError("connection refused")
        self.rows.pop((table, str(entity_id)), None)
        return True


@pytest.fixture
def cache():
    store = LocalCacheStore("sqlite:///:memory:")
    yield store
    store.dispose()


def make_manager(app, cache, remote, **kwargs):
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("backoff_base_seconds", 30)
    kwargs.setdefault("backoff_max_seconds", 900)
    return SyncManager(app, cache, remote, run_in_background=False, **kwargs)


def _user(user_id, **extra):
    return {
        "id": user_id,
        "username": f"user{user_id}",
        "email": f"user{user_id}@example.com",
        "password_hash": "x",
        "role": "staff",
        **extra,
    }


class TestSyncAgainstRemoteDatabase:
    def test_queued_update_reaches_remote_and_is_marked_synced(self, app, db_session):
        store = get_local_store()
        store.save("users", _user("42"))
        store.update("users", "42", {"role": "admin"})

        report = get_sync_manager().sync_now()

        assert report.skipped is False
        assert report.synced == 2
        assert report.failed == 0
        assert get_remote().get("users", "42")["role"] == "admin"
        assert store.pending_count() == 0
        assert store.get_sync_status("users", "42") == SYNC_SYNCED

    def test_queued_delete_removes_remote_row(self, app, db_session):
        store = get_local_store()
        store.save("stores", {"id": "s-1", "name": "Main"})
        get_sync_manager().sync_now()
        assert get_remote().get("stores", "s-1") is not None

        store.delete("stores", "s-1")
        report = get_sync_manager().sync_now()

        assert report.synced == 1
        assert get_remote().get("stores", "s-1") is None

    def test_offline_skips_then_online_drains(self, app, db_session):
        manager = get_sync_manager()
        store = get_local_store()
        manager.set_online(False)
        store.save("stores", {"id": "s-2", "name": "Branch"})

        report = manager.sync_now()
        assert report.skipped is True
        assert report.reason == "offline"
        assert store.pending_count() == 1

        manager.set_online(True)
        assert store.pending_count() == 0
        assert get_remote().get("stores", "s-2")["name"] == "Branch"


class TestBackoffAndDeadLetters:
    def test_backoff_doubles_and_caps(self, app, cache):
        manager = make_manager(app, cache, RecordingRemote())
        assert manager.backoff_for(1) == timedelta(seconds=30)
        assert manager.backoff_for(2) == timedelta(seconds=60)
        assert manager.backoff_for(3) == timedelta(seconds=120)
        assert manager.backoff_for(10) == timedelta(seconds=900)

    def test_failure_records_attempt_and_schedules_retry(self, app, cache):
        remote = RecordingRemote(fail_when=lambda *args: True)
        manager = make_manager(app, cache, remote)
        cache.save("users", _user("u-1"))

        before = utcnow()
        report = manager.sync_now()

        assert report.attempted == 1
        assert report.failed == 1
        entry = cache.list_pending_operations()[0]
        assert entry.attempts == 1
        assert "connection refused" in entry.last_error
        assert entry.next_attempt_at >= before + timedelta(seconds=30)

        # Not due yet: the next pass leaves it alone
        report = manager.sync_now()
        assert report.attempted == 0
        assert len(remote.calls) == 1

    def test_entry_dead_letters_after_max_attempts(self, app, cache):
        remote = RecordingRemote(fail_when=lambda *args: True)
        manager = make_manager(app, cache, remote, max_attempts=1)
        cache.save("users", _user("u-1"))

        report = manager.sync_now()

        assert report.dead_lettered == 1
        assert cache.pending_count() == 0
        assert cache.get_sync_status("users", "u-1") == SYNC_ERROR
        dead = manager.dead_letters()
        assert len(dead) == 1
        assert dead[0]["entity_id"] == "u-1"
        assert dead[0]["attempts"] == 1

    def test_requeue_gives_fresh_budget(self, app, cache):
        remote = RecordingRemote(fail_when=lambda *args: True)
        manager = make_manager(app, cache, remote, max_attempts=1)
        cache.save("users", _user("u-1"))
        manager.sync_now()
        operation_id = manager.dead_letters()[0]["id"]

        remote.fail_when = lambda *args: False
        assert manager.requeue(operation_id) is True
        report = manager.sync_now()

        assert report.synced == 1
        assert manager.dead_letters() == []
        assert cache.get_sync_status("users", "u-1") == SYNC_SYNCED

    def test_requeue_unknown_id(self, app, cache):
        manager = make_manager(app, cache, RecordingRemote())
        assert manager.requeue(999) is False


class TestOrdering:
    def test_failing_entry_holds_back_same_record_only(self, app, cache):
        remote = RecordingRemote(fail_when=lambda op, table, data: data["id"] == "u-1")
        manager = make_manager(app, cache, remote)
        cache.save("users", _user("u-1"))
        cache.save("users", _user("u-2"))
        cache.update("users", "u-1", {"role": "admin"})

        report = manager.sync_now()

        assert report.attempted == 2
        assert report.synced == 1
        assert report.failed == 1
        assert remote.calls == [("upsert", "users", "u-1"), ("upsert", "users", "u-2")]
        remaining = cache.list_pending_operations()
        assert [(op.entity_id, op.attempts) for op in remaining] == [("u-1", 1), ("u-1", 0)]

    def test_record_stays_pending_while_later_entry_fails(self, app, cache):
        remote = RecordingRemote(fail_when=lambda op, table, data: data.get("role") == "admin")
        manager = make_manager(app, cache, remote)
        cache.save("users", _user("u-1"))
        cache.update("users", "u-1", {"role": "admin"})

        report = manager.sync_now()

        assert report.synced == 1
        assert report.failed == 1
        assert cache.get_sync_status("users", "u-1") == SYNC_PENDING

    def test_dead_letter_holds_back_later_entries_until_requeued(self, app, cache):
        remote = RecordingRemote(fail_when=lambda *args: True)
        manager = make_manager(app, cache, remote, max_attempts=1)
        cache.save("stores", {"id": "s1", "name": "old"})
        manager.sync_now()
        operation_id = manager.dead_letters()[0]["id"]

        # The remote recovers, but the newer write must not overtake the dead one
        remote.fail_when = lambda *args: False
        cache.update("stores", "s1", {"name": "new"})
        report = manager.sync_now()

        assert report.attempted == 0
        assert remote.rows == {}
        assert cache.pending_count() == 1

        assert manager.requeue(operation_id) is True
        report = manager.sync_now()

        assert report.synced == 2
        assert remote.rows[("stores", "s1")]["name"] == "new"
        assert cache.get("stores", "s1")["name"] == "new"
        assert cache.get_sync_status("stores", "s1") == SYNC_SYNCED

    def test_dead_letter_does_not_block_other_records(self, app, cache):
        remote = RecordingRemote(fail_when=lambda op, table, data: data["id"] == "u-1")
        manager = make_manager(app, cache, remote, max_attempts=1)
        cache.save("users", _user("u-1"))
        manager.sync_now()

        cache.save("users", _user("u-2"))
        report = manager.sync_now()

        assert report.synced == 1
        assert ("users", "u-2") in remote.rows


class TestDeadLetterScope:
    def _dead_letter_all(self, app, cache):
        manager = make_manager(app, cache, RecordingRemote(fail_when=lambda *args: True), max_attempts=1)
        cache.save("stores", {"id": "store-a", "name": "A"})
        cache.save("users", _user("u-a", store_id="store-a", password_hash="$2b$04$secret"))
        cache.save("users", _user("u-b", store_id="store-b"))
        cache.save("users", _user("dev", store_id=None))
        manager.sync_now()
        return manager

    def test_listing_is_filtered_by_owning_store(self, app, cache):
        manager = self._dead_letter_all(app, cache)

        assert [d["entity_id"] for d in manager.dead_letters(store_id="store-a")] == ["store-a", "u-a"]
        assert [d["entity_id"] for d in manager.dead_letters(store_id="store-b")] == ["u-b"]
        assert len(manager.dead_letters()) == 4

    def test_password_hash_is_never_listed(self, app, cache):
        manager = self._dead_letter_all(app, cache)

        for entry in manager.dead_letters():
            assert "password_hash" not in entry["data"]
        # The queued snapshot itself is untouched
        assert cache.list_dead_letters()[1].data["password_hash"] == "$2b$04$secret"

    def test_requeue_refuses_other_stores_entries(self, app, cache):
        manager = self._dead_letter_all(app, cache)
        foreign_id = manager.dead_letters(store_id="store-b")[0]["id"]

        assert manager.requeue(foreign_id, store_id="store-a") is False
        assert cache.get_operation(foreign_id).status == "dead"
        assert manager.requeue(foreign_id, store_id="store-b") is True

    def test_queued_delete_keeps_owner(self, app, cache):
        cache.save("users", _user("u-a", store_id="store-a"))
        cache.delete("users", "u-a")

        assert cache.list_pending_operations()[-1].store_id == "store-a"


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestBackgroundLoop:
    @pytest.fixture
    def cache(self, tmp_path):
        # File-backed: the loop thread and the test each get their own connection
        store = LocalCacheStore(f"sqlite:///{tmp_path / 'cache.db'}")
        yield store
        store.dispose()

    @pytest.fixture
    def manager(self, app, cache):
        manager = SyncManager(app, cache, RecordingRemote(), interval_seconds=60, run_in_background=True)
        yield manager
        manager.stop()

    def test_start_runs_first_pass_immediately(self, manager, cache):
        cache.save("users", _user("u-1"))

        assert manager.start() is True
        assert manager.is_running is True
        # The interval is a minute; only the immediate pass can drain the queue
        assert _wait_for(lambda: cache.pending_count() == 0)
        assert cache.get_sync_status("users", "u-1") == SYNC_SYNCED

    def test_start_is_noop_when_running_or_offline(self, manager):
        assert manager.start() is True
        thread = manager._thread
        assert manager.start() is False
        assert manager._thread is thread

        manager.set_online(False)
        assert manager.start() is False
        assert manager.is_running is False

    def test_stop_joins_thread(self, manager):
        manager.start()
        thread = manager._thread

        manager.stop()

        assert manager.is_running is False
        assert not thread.is_alive()

    def test_online_switch_stops_and_restarts_loop(self, manager, cache):
        manager.start()
        manager.set_online(False)
        assert manager.is_running is False

        cache.save("stores", {"id": "s-9", "name": "Branch"})
        time.sleep(0.05)
        assert cache.pending_count() == 1

        manager.set_online(True)
        assert manager.is_running is True
        assert _wait_for(lambda: cache.pending_count() == 0)
        assert ("stores", "s-9") in manager.remote.rows


class TestPassControl:
    def test_pass_in_flight_is_skipped(self, app, cache):
        manager = make_manager(app, cache, RecordingRemote())
        cache.save("users", _user("u-1"))

        manager._pass_lock.acquire()
        try:
            report = manager.sync_now()
        finally:
            manager._pass_lock.release()

        assert report.skipped is True
        assert report.reason == "in_progress"
        assert cache.pending_count() == 1

    def test_status_reports_queue_and_last_pass(self, app, cache):
        manager = make_manager(app, cache, RecordingRemote())
        cache.save("users", _user("u-1"))
        assert manager.status()["pending"] == 1
        assert manager.status()["last_pass"] is None

        manager.sync_now()
        status = manager.status()
        assert status["pending"] == 0
        assert status["online"] is True
        assert status["running"] is False
        assert status["last_pass"]["synced"] == 1
