"""Sync ledger for Marksync.

Tracks, per collection, when each device last synced (its watermark) and
keeps a bounded activity log of sync events, newest first.

Activity logging is best-effort: a failure to append is logged and reported
to an optional diagnostics callback, but never raised to the caller.

CRITICAL: This module must have NO Flask dependencies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .store import KeyValueStore
from .timestamp_utils import TimestampLike, parse_timestamp

logger = logging.getLogger(__name__)

__all__ = [
    "ACTIVITY_LOG_LIMIT",
    "ActivityEntry",
    "SyncLedger",
    "filter_since",
]

ACTIVITY_LOG_LIMIT = 1000

WATERMARK_KEY_TEMPLATE = "{namespace}device_{device_id}_last_sync"
ACTIVITY_LOG_KEY_TEMPLATE = "{namespace}sync_logs"


@dataclass
class ActivityEntry:
    """One sync event in the activity log."""

    device_id: str
    action: str
    count: int
    timestamp: str
    user_agent: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON shape stored in the log."""
        data: Dict[str, Any] = {
            "deviceId": self.device_id,
            "action": self.action,
            "count": self.count,
            "timestamp": self.timestamp,
        }
        if self.user_agent is not None:
            data["userAgent"] = self.user_agent
        return data


def filter_since(
    snapshot: Iterable[Dict[str, Any]], since: TimestampLike
) -> List[Dict[str, Any]]:
    """Get the bookmarks updated strictly after since.

    Args:
        snapshot: Bookmarks in snapshot order
        since: Watermark, or None for no filtering

    Returns:
        Matching bookmarks in their original order (all of them if since is None)
    """
    if since is None:
        return list(snapshot)
    cutoff = parse_timestamp(since)
    return [b for b in snapshot if parse_timestamp(b.get("updatedAt")) > cutoff]


class SyncLedger:
    """Watermarks and activity log of one collection.

    Attributes:
        store: Storage backend
        namespace: Key prefix; "" for the global collection
        log_limit: Maximum number of activity entries kept
    """

    def __init__(
        self,
        store: KeyValueStore,
        namespace: str = "",
        log_limit: int = ACTIVITY_LOG_LIMIT,
        on_log_failure: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        """Initialize a ledger.

        Args:
            store: Storage backend
            namespace: Key prefix, e.g. "user_alice_"
            log_limit: Maximum number of activity entries kept
            on_log_failure: Called with the exception when an append fails
        """
        self.store = store
        self.namespace = namespace
        self.log_limit = log_limit
        self.on_log_failure = on_log_failure

    def watermark_key(self, device_id: str) -> str:
        return WATERMARK_KEY_TEMPLATE.format(namespace=self.namespace, device_id=device_id)

    @property
    def activity_key(self) -> str:
        return ACTIVITY_LOG_KEY_TEMPLATE.format(namespace=self.namespace)

    def watermark_for(self, device_id: str) -> Optional[str]:
        """Get the last sync timestamp of a device, or None if it never pushed."""
        value = self.store.get(self.watermark_key(device_id))
        return value if value else None

    def advance_watermark(self, device_id: str, timestamp: str) -> None:
        """Set the watermark of a device.

        The value is overwritten unconditionally, even when it moves backwards.
        """
        self.store.put(self.watermark_key(device_id), timestamp)

    def filter_since(
        self, snapshot: Iterable[Dict[str, Any]], since: TimestampLike
    ) -> List[Dict[str, Any]]:
        """See module-level filter_since."""
        return filter_since(snapshot, since)

    def activity(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Get activity entries, newest first."""
        entries = self.store.get(self.activity_key) or []
        if not isinstance(entries, list):
            logger.warning(f"Ignoring malformed activity log at {self.activity_key}")
            return []
        if limit is not None:
            return entries[:limit]
        return entries

    def append_activity(self, entry: ActivityEntry) -> None:
        """Prepend an entry to the activity log and trim it to log_limit.

        Never raises.
        """
        try:
            entries = self.store.get(self.activity_key) or []
            if not isinstance(entries, list):
                entries = []
            entries.insert(0, entry.to_dict())
            self.store.put(self.activity_key, entries[: self.log_limit])
        except Exception as e:
            logger.warning(f"Failed to log sync activity for {entry.device_id}: {e}")
            self._report_log_failure(e)

    def _report_log_failure(self, error: Exception) -> None:
        if self.on_log_failure is None:
            return
        try:
            self.on_log_failure(error)
        except Exception as e:
            logger.error(f"Activity log failure handler raised: {e}")
