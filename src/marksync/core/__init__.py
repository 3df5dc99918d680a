"""Core modules for Marksync.

Everything here is usable without the HTTP layer except sync.py, which
also defines the Flask blueprint.
"""

from .ledger import ActivityEntry, SyncLedger, filter_since
from .merge import MergeDecision, MergePolicy, MergeResult, merge_bookmarks, overwrite_bookmarks
from .store import MarksyncError, MemoryStore, SQLiteStore, StorageUnavailable
from .validation import ValidationError

__all__ = [
    "ActivityEntry",
    "SyncLedger",
    "filter_since",
    "MergeDecision",
    "MergePolicy",
    "MergeResult",
    "merge_bookmarks",
    "overwrite_bookmarks",
    "MarksyncError",
    "MemoryStore",
    "SQLiteStore",
    "StorageUnavailable",
    "ValidationError",
]
