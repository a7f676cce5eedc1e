from .local_store import LocalCacheStore, SyncQueueEntry
from .schema_mapping import to_canonical

__all__ = ["LocalCacheStore", "SyncQueueEntry", "to_canonical"]
