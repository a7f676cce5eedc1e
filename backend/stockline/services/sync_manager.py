# Overview: Background sync manager; drains the local sync queue into the remote database.

"""
SyncManager - pushes locally-queued writes to the remote database.

Features:
- Background interval thread (SYNC_INTERVAL_SECONDS, default 30)
- One pass at a time; a pass that finds another in flight is skipped
- Queue order preserved per record, including across dead letters
- Bounded exponential backoff per entry, then dead-letter
- Online/offline switch; nothing is attempted while offline

Usage:
    manager = SyncManager(app, local_store, remote)
    manager.start()
    manager.sync_now()
    manager.stop()
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from flask import has_app_context

from ..storage.local_store import OP_DELETE, SyncQueueEntry
from ..time_utils import to_utc_z, utcnow

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of one sync pass."""
    skipped: bool = False
    reason: Optional[str] = None
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    dead_lettered: int = 0
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "skipped": self.skipped,
            "reason": self.reason,
            "attempted": self.attempted,
            "synced": self.synced,
            "failed": self.failed,
            "dead_lettered": self.dead_lettered,
            "started_at": to_utc_z(self.started_at),
            "finished_at": to_utc_z(self.finished_at),
        }


class SyncManager:
    def __init__(
        self,
        app,
        local_store,
        remote,
        *,
        interval_seconds: int = 30,
        max_attempts: int = 5,
        backoff_base_seconds: int = 30,
        backoff_max_seconds: int = 900,
        run_in_background: bool = True,
    ):
        self.app = app
        self.local_store = local_store
        self.remote = remote
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        # False: no thread; coming back online runs one pass inline instead.
        self.run_in_background = run_in_background

        self._online = True
        self._pass_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._last_report: Optional[SyncReport] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_syncing(self) -> bool:
        return self._pass_lock.locked()

    @property
    def online(self) -> bool:
        return self._online

    def start(self) -> bool:
        """Start the interval loop; its first pass runs immediately. No-op if running or offline."""
        with self._state_lock:
            if self.is_running or not self._online:
                return False
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="stockline-sync",
                daemon=True,
            )
            self._thread.start()
        logger.info("Sync manager started (interval %ss)", self.interval_seconds)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        with self._state_lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            logger.info("Sync manager stopped")

    def set_online(self, online: bool) -> None:
        """Network transitions: offline stops the loop, online restarts it."""
        was_online = self._online
        self._online = bool(online)
        if was_online and not self._online:
            logger.info("Connection lost; sync paused")
            self.stop()
        elif not was_online and self._online:
            logger.info("Connection restored; resuming sync")
            if self.run_in_background:
                self.start()
            else:
                self.sync_now()

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self.sync_now()
            except Exception:
                logger.exception("Sync pass crashed")
            if stop_event.wait(self.interval_seconds):
                break

    # ------------------------------------------------------------------
    # Sync pass
    # ------------------------------------------------------------------

    def backoff_for(self, attempts: int) -> timedelta:
        """Delay before the next try after `attempts` failures."""
        exponent = max(attempts - 1, 0)
        seconds = min(self.backoff_base_seconds * (2 ** exponent), self.backoff_max_seconds)
        return timedelta(seconds=seconds)

    def sync_now(self) -> SyncReport:
        """Run one pass over the due queue entries, unless one is in flight."""
        if not self._online:
            return SyncReport(skipped=True, reason="offline", finished_at=utcnow())
        if not self._pass_lock.acquire(blocking=False):
            logger.debug("Sync pass already in progress; skipping")
            return SyncReport(skipped=True, reason="in_progress", finished_at=utcnow())
        try:
            if has_app_context():
                report = self._sync_pass()
            else:
                with self.app.app_context():
                    report = self._sync_pass()
        finally:
            self._pass_lock.release()
        self._last_report = report
        return report

    def _sync_pass(self) -> SyncReport:
        report = SyncReport()
        now = utcnow()
        # Records with an entry backing off or dead-lettered keep their later entries queued.
        blocked: set[tuple[str, str]] = {
            (entry.table, entry.entity_id) for entry in self.local_store.list_dead_letters()
        }
        for entry in self.local_store.list_pending_operations():
            if not self._online:
                break
            key = (entry.table, entry.entity_id)
            if key in blocked:
                continue
            if entry.next_attempt_at is not None and entry.next_attempt_at > now:
                blocked.add(key)
                continue
            report.attempted += 1
            try:
                self._dispatch(entry)
            except Exception as exc:
                report.failed += 1
                blocked.add(key)
                if self._handle_failure(entry, exc):
                    report.dead_lettered += 1
                continue
            self.local_store.clear_operation(entry.id)
            if entry.operation != OP_DELETE and not self.local_store.has_pending(entry.table, entry.entity_id):
                self.local_store.mark_synced(entry.table, entry.entity_id)
            report.synced += 1

        report.finished_at = utcnow()
        if report.attempted:
            logger.info(
                "Sync pass: %s attempted, %s synced, %s failed, %s dead-lettered",
                report.attempted,
                report.synced,
                report.failed,
                report.dead_lettered,
            )
        return report

    def _dispatch(self, entry: SyncQueueEntry) -> None:
        if entry.operation == OP_DELETE:
            self.remote.delete(entry.table, entry.entity_id)
        else:
            data = dict(entry.data)
            data.setdefault("id", entry.entity_id)
            self.remote.upsert(entry.table, data)

    def _handle_failure(self, entry: SyncQueueEntry, exc: Exception) -> bool:
        """Record a failed attempt. Returns True if the entry was dead-lettered."""
        attempts = entry.attempts + 1
        error = f"{exc.__class__.__name__}: {exc}"
        if attempts >= self.max_attempts:
            logger.error(
                "Sync of %s %s/%s failed %s times; dead-lettered: %s",
                entry.operation,
                entry.table,
                entry.entity_id,
                attempts,
                error,
            )
            self.local_store.dead_letter(entry.id, error)
            self.local_store.mark_error(entry.table, entry.entity_id)
            return True

        next_attempt_at = utcnow() + self.backoff_for(attempts)
        logger.warning(
            "Sync of %s %s/%s failed (attempt %s/%s), retry at %s: %s",
            entry.operation,
            entry.table,
            entry.entity_id,
            attempts,
            self.max_attempts,
            to_utc_z(next_attempt_at),
            error,
        )
        self.local_store.record_failure(entry.id, error, next_attempt_at)
        return False

    # ------------------------------------------------------------------
    # Operator surface
    # ------------------------------------------------------------------

    def dead_letters(self, store_id: Optional[str] = None) -> list[dict]:
        """Dead-lettered entries; with `store_id`, only those of that tenant."""
        entries = self.local_store.list_dead_letters()
        if store_id is not None:
            entries = [entry for entry in entries if entry.store_id == store_id]
        return [entry.to_dict() for entry in entries]

    def requeue(self, operation_id: int, store_id: Optional[str] = None) -> bool:
        if store_id is not None:
            entry = self.local_store.get_operation(operation_id)
            if entry is None or entry.store_id != store_id:
                return False
        requeued = self.local_store.requeue(operation_id)
        if requeued:
            logger.info("Requeued dead-lettered sync operation %s", operation_id)
        return requeued

    def status(self) -> dict:
        return {
            "running": self.is_running,
            "online": self._online,
            "is_syncing": self.is_syncing,
            "pending": self.local_store.pending_count(),
            "dead_letters": self.local_store.dead_letter_count(),
            "last_pass": self._last_report.to_dict() if self._last_report else None,
        }
