"""Sync service and server endpoints for Marksync.

Devices synchronize through a central store using two operations:

1. Pull: read a collection's snapshot, optionally only the bookmarks updated
   after the device's last push.
2. Push: merge the device's bookmarks into the snapshot, save it, advance the
   device's watermark and record the event in the activity log.

Collections are either the global one ("global_bookmarks") or one per user
("user_<username>_bookmarks"). Each request runs its own read-merge-write
cycle with no locking, so concurrent pushes to the same collection can lose
an update: the last write wins.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import Blueprint, Flask, jsonify, request

from .ledger import ACTIVITY_LOG_LIMIT, ActivityEntry, SyncLedger, filter_since
from .merge import MergeDecision, MergePolicy, MergeResult, merge_bookmarks, overwrite_bookmarks
from .store import KeyValueStore, StorageUnavailable
from .timestamp_utils import Clock, TimestampLike, format_timestamp, normalize_timestamp, utc_now
from .validation import (
    ValidationError,
    validate_bookmarks,
    validate_device_id,
    validate_folders,
    validate_limit,
    validate_username,
)

logger = logging.getLogger(__name__)

GLOBAL_COLLECTION = "global_bookmarks"
USER_PREFIX = "user_"
USER_COLLECTION_SUFFIX = "_bookmarks"
WATERMARK_PREFIX = "device_"
WATERMARK_SUFFIX = "_last_sync"


def user_namespace(username: str) -> str:
    return f"{USER_PREFIX}{username}_"


def user_collection_key(username: str) -> str:
    """Get the store key of a user's bookmark collection."""
    return f"{USER_PREFIX}{username}{USER_COLLECTION_SUFFIX}"


@dataclass
class PullResult:
    """Result of a pull."""

    bookmarks: List[Dict[str, Any]]
    total_count: int
    device_last_sync: Optional[str] = None
    folders: Optional[List[Any]] = None
    last_sync: Optional[str] = None


@dataclass
class PushResult:
    """Result of a push."""

    bookmarks: List[Dict[str, Any]]
    synced_count: int
    total_count: int
    sync_time: str
    decisions: Dict[Any, MergeDecision] = field(default_factory=dict)
    folders: Optional[List[Any]] = None


@dataclass
class SyncStats:
    """Aggregate statistics over the store."""

    total_bookmarks: int
    device_count: int
    user_count: int
    activity_count: int
    last_activity: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalBookmarks": self.total_bookmarks,
            "deviceCount": self.device_count,
            "userCount": self.user_count,
            "activityCount": self.activity_count,
            "lastActivity": self.last_activity,
        }


class SyncService:
    """Pull and push against collections in a key-value store.

    Attributes:
        store: Storage backend
        clock: Source of the current time
        log_limit: Maximum activity log length per collection
        merge_policy: How pushes are combined with stored snapshots
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock = utc_now,
        log_limit: int = ACTIVITY_LOG_LIMIT,
        merge_policy: MergePolicy = MergePolicy.MERGE,
        on_log_failure: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.log_limit = log_limit
        self.merge_policy = merge_policy
        self.on_log_failure = on_log_failure

    def ledger(self, namespace: str = "") -> SyncLedger:
        """Get the ledger of the collection with the given key prefix."""
        return SyncLedger(
            self.store,
            namespace=namespace,
            log_limit=self.log_limit,
            on_log_failure=self.on_log_failure,
        )

    def _read_collection(
        self, collection_key: str
    ) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]]]:
        """Read a snapshot and its metadata.

        Collections are stored either as a bare list of bookmarks or as an
        object wrapping the list with folders and sync times. The metadata is
        None for bare lists and missing collections.
        """
        value = self.store.get(collection_key)
        if value is None:
            return [], None
        if isinstance(value, list):
            return value, None
        if isinstance(value, dict):
            bookmarks = value.get("bookmarks")
            meta = {k: v for k, v in value.items() if k != "bookmarks"}
            return (bookmarks if isinstance(bookmarks, list) else []), meta
        logger.warning(f"Ignoring malformed collection at {collection_key}")
        return [], None

    def _combine(
        self,
        existing: List[Dict[str, Any]],
        incoming: List[Dict[str, Any]],
        device_id: str,
    ) -> MergeResult:
        if self.merge_policy is MergePolicy.OVERWRITE:
            return overwrite_bookmarks(incoming, device_id, self.clock)
        return merge_bookmarks(existing, incoming, device_id, self.clock)

    # ===== Core entry points =====

    def pull(self, collection_key: str, since: TimestampLike = None) -> PullResult:
        """Read a collection, keeping only bookmarks updated after since.

        Args:
            collection_key: Store key of the collection
            since: Watermark to filter on, or None for the whole snapshot

        Returns:
            PullResult with the (filtered) bookmarks and the full snapshot size
        """
        bookmarks, _ = self._read_collection(collection_key)
        return PullResult(
            bookmarks=filter_since(bookmarks, since),
            total_count=len(bookmarks),
        )

    def push(
        self,
        collection_key: str,
        device_id: str,
        incoming: Any,
        sync_timestamp: TimestampLike = None,
        action: Optional[str] = None,
        user_agent: Optional[str] = None,
        namespace: str = "",
    ) -> PushResult:
        """Merge a device's bookmarks into a collection.

        The snapshot is written before the watermark. If the snapshot write
        fails, nothing has changed and StorageUnavailable propagates. The
        activity log entry is best-effort.

        A collection stored wrapped with folders and sync times stays wrapped:
        its metadata is kept and lastSync and syncTime are refreshed.

        Args:
            collection_key: Store key of the collection
            device_id: The pushing device
            incoming: Bookmarks pushed by the device
            sync_timestamp: New watermark for the device (default: now)
            action: Action label recorded in the activity log
            user_agent: Client user agent recorded in the activity log
            namespace: Key prefix of the collection's ledger

        Returns:
            PushResult with the merged snapshot

        Raises:
            ValidationError: If device_id or incoming is malformed
            StorageUnavailable: If the store fails
        """
        device_id = validate_device_id(device_id)
        incoming = validate_bookmarks(incoming)

        existing, meta = self._read_collection(collection_key)
        result = self._combine(existing, incoming, device_id)
        last_sync = normalize_timestamp(sync_timestamp, self.clock)
        if meta is None:
            self.store.put(collection_key, result.bookmarks)
        else:
            self.store.put(collection_key, {
                **meta,
                "bookmarks": result.bookmarks,
                "lastSync": last_sync,
                "syncTime": format_timestamp(self.clock()),
            })

        return self._finish_push(
            result, device_id, incoming, last_sync, action, user_agent, namespace
        )

    def _finish_push(
        self,
        result: MergeResult,
        device_id: str,
        incoming: List[Dict[str, Any]],
        sync_timestamp: TimestampLike,
        action: Optional[str],
        user_agent: Optional[str],
        namespace: str,
    ) -> PushResult:
        ledger = self.ledger(namespace)
        ledger.advance_watermark(device_id, normalize_timestamp(sync_timestamp, self.clock))

        now = format_timestamp(self.clock())
        ledger.append_activity(ActivityEntry(
            device_id=device_id,
            action=action or "push",
            count=len(incoming),
            timestamp=now,
            user_agent=user_agent,
        ))

        logger.info(
            f"Push from {device_id}: {len(incoming)} received, {result.added} added, "
            f"{result.accepted} updated, {result.kept} kept, {len(result.bookmarks)} total"
        )

        return PushResult(
            bookmarks=result.bookmarks,
            synced_count=len(incoming),
            total_count=len(result.bookmarks),
            sync_time=now,
            decisions=result.decisions,
        )

    def pull_for_device(self, device_id: str, action: Optional[str] = None) -> PullResult:
        """Pull the global collection on behalf of a device.

        Only when the device has a watermark and action is "pull" are the
        bookmarks filtered; otherwise the whole snapshot is returned.
        """
        device_id = validate_device_id(device_id)
        last_sync = self.ledger().watermark_for(device_id)
        since = last_sync if action == "pull" else None
        result = self.pull(GLOBAL_COLLECTION, since)
        result.device_last_sync = last_sync
        logger.debug(
            f"Pull for {device_id}: returning {len(result.bookmarks)} of {result.total_count}"
        )
        return result

    # ===== Per-user collections =====

    def pull_user(
        self,
        username: str,
        device_id: Optional[str] = None,
        action: Optional[str] = None,
    ) -> PullResult:
        """Pull a user's collection.

        With a device_id and action "pull", only bookmarks updated after that
        device's watermark in the user's ledger are returned.
        """
        username = validate_username(username)
        bookmarks, meta = self._read_collection(user_collection_key(username))
        meta = meta or {}

        last_sync = None
        since = None
        if device_id:
            device_id = validate_device_id(device_id)
            last_sync = self.ledger(user_namespace(username)).watermark_for(device_id)
            if action == "pull":
                since = last_sync

        folders = meta.get("folders")
        return PullResult(
            bookmarks=filter_since(bookmarks, since),
            total_count=len(bookmarks),
            device_last_sync=last_sync,
            folders=folders if isinstance(folders, list) else [],
            last_sync=meta.get("lastSync"),
        )

    def push_user(
        self,
        username: str,
        device_id: str,
        incoming: Any,
        folders: Any = None,
        sync_timestamp: TimestampLike = None,
        action: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> PushResult:
        """Merge a device's bookmarks into a user's collection.

        The collection is stored wrapped with its folders and sync times.
        Folders are opaque: a pushed list replaces the stored one, a missing
        list keeps it.
        """
        username = validate_username(username)
        device_id = validate_device_id(device_id)
        incoming = validate_bookmarks(incoming)
        new_folders = validate_folders(folders) if folders is not None else None

        key = user_collection_key(username)
        existing, meta = self._read_collection(key)
        meta = meta or {}
        result = self._combine(existing, incoming, device_id)

        stored_folders = meta.get("folders") if isinstance(meta.get("folders"), list) else []
        last_sync = normalize_timestamp(sync_timestamp, self.clock)
        self.store.put(key, {
            "bookmarks": result.bookmarks,
            "folders": new_folders if new_folders is not None else stored_folders,
            "lastSync": last_sync,
            "syncTime": format_timestamp(self.clock()),
        })

        push_result = self._finish_push(
            result, device_id, incoming, last_sync, action, user_agent, user_namespace(username)
        )
        push_result.folders = new_folders if new_folders is not None else stored_folders
        return push_result

    # ===== Reporting =====

    def activity(self, limit: Optional[int] = None, username: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get activity log entries, newest first."""
        namespace = user_namespace(validate_username(username)) if username else ""
        return self.ledger(namespace).activity(limit)

    def stats(self) -> SyncStats:
        """Compute aggregate statistics using key listings."""
        bookmarks, _ = self._read_collection(GLOBAL_COLLECTION)
        devices = {
            key for key in self.store.list_keys(WATERMARK_PREFIX)
            if key.endswith(WATERMARK_SUFFIX)
        }
        users = {
            key for key in self.store.list_keys(USER_PREFIX)
            if key.endswith(USER_COLLECTION_SUFFIX)
        }
        entries = self.ledger().activity()
        return SyncStats(
            total_bookmarks=len(bookmarks),
            device_count=len(devices),
            user_count=len(users),
            activity_count=len(entries),
            last_activity=entries[0] if entries else None,
        )


def sync_endpoint(func: Callable) -> Callable:
    """Decorator for consistent sync endpoint error handling.

    ValidationError maps to 400, StorageUnavailable to 503 (retryable),
    anything else to 500.
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ValidationError as e:
            logger.warning(f"{func.__name__} rejected: {e}")
            return jsonify({
                "success": False,
                "error": f"Invalid {e.field}: {e.message}",
            }), 400
        except StorageUnavailable as e:
            logger.error(f"Storage error in {func.__name__}: {e}")
            return jsonify({
                "success": False,
                "error": "Storage unavailable",
                "message": str(e),
                "retryable": True,
            }), 503
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {e}")
            return jsonify({
                "success": False,
                "error": "Internal Server Error",
                "message": str(e),
            }), 500
    return wrapper


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("body", "a JSON object is required")
    return data


def create_sync_blueprint(service: SyncService) -> Blueprint:
    """Create Flask blueprint for sync endpoints.

    Args:
        service: SyncService the endpoints delegate to

    Returns:
        Flask Blueprint with sync routes under /api
    """
    sync_bp = Blueprint("sync", __name__, url_prefix="/api")

    @sync_bp.route("/sync", methods=["GET"])
    @sync_endpoint
    def pull() -> Tuple[Any, int]:
        """Pull the global collection.

        Query params:
            deviceId: Requesting device (required)
            action: "pull" to receive only bookmarks updated since the
                device's last push
        """
        result = service.pull_for_device(
            request.args.get("deviceId"), request.args.get("action")
        )
        return jsonify({
            "success": True,
            "bookmarks": result.bookmarks,
            "totalCount": result.total_count,
            "deviceLastSync": result.device_last_sync,
            "serverTime": format_timestamp(service.clock()),
        }), 200

    @sync_bp.route("/sync", methods=["POST"])
    @sync_endpoint
    def push() -> Tuple[Any, int]:
        """Push bookmarks into the global collection.

        Request body:
            {
                "deviceId": "...",
                "bookmarks": [...],
                "timestamp": "...",
                "action": "..."
            }
        """
        data = _json_body()
        result = service.push(
            GLOBAL_COLLECTION,
            data.get("deviceId"),
            data.get("bookmarks"),
            sync_timestamp=data.get("timestamp"),
            action=data.get("action"),
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify({
            "success": True,
            "message": "Bookmarks synced successfully",
            "bookmarks": result.bookmarks,
            "syncedCount": result.synced_count,
            "totalCount": result.total_count,
            "syncTime": result.sync_time,
        }), 200

    @sync_bp.route("/sync/log", methods=["GET"])
    @sync_endpoint
    def activity_log() -> Tuple[Any, int]:
        """Get the global activity log, newest first."""
        limit = validate_limit(request.args.get("limit"))
        entries = service.activity(limit)
        return jsonify({"success": True, "logs": entries, "count": len(entries)}), 200

    @sync_bp.route("/users/<username>/sync", methods=["GET"])
    @sync_endpoint
    def pull_user(username: str) -> Tuple[Any, int]:
        """Pull a user's collection with its folders."""
        result = service.pull_user(
            username, request.args.get("deviceId"), request.args.get("action")
        )
        return jsonify({
            "success": True,
            "bookmarks": result.bookmarks,
            "folders": result.folders,
            "lastSync": result.last_sync,
            "deviceLastSync": result.device_last_sync,
            "totalCount": result.total_count,
            "serverTime": format_timestamp(service.clock()),
        }), 200

    @sync_bp.route("/users/<username>/sync", methods=["POST"])
    @sync_endpoint
    def push_user(username: str) -> Tuple[Any, int]:
        """Push bookmarks and folders into a user's collection."""
        data = _json_body()
        result = service.push_user(
            username,
            data.get("deviceId"),
            data.get("bookmarks"),
            folders=data.get("folders"),
            sync_timestamp=data.get("timestamp"),
            action=data.get("action"),
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify({
            "success": True,
            "message": "Bookmarks synced successfully",
            "bookmarks": result.bookmarks,
            "folders": result.folders,
            "syncedCount": result.synced_count,
            "totalCount": result.total_count,
            "syncTime": result.sync_time,
        }), 200

    @sync_bp.route("/stats", methods=["GET"])
    @sync_endpoint
    def stats() -> Tuple[Any, int]:
        """Get aggregate sync statistics."""
        return jsonify({"success": True, **service.stats().to_dict()}), 200

    return sync_bp


def create_sync_server(service: SyncService) -> Flask:
    """Create a standalone Flask sync server without CORS or health routes.

    Args:
        service: SyncService instance

    Returns:
        Flask application instance
    """
    app = Flask(__name__)
    app.json.sort_keys = False
    app.register_blueprint(create_sync_blueprint(service))
    return app
