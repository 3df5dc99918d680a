"""Key-value storage for Marksync.

The sync engine needs exactly three operations from its storage: get a JSON
value by key, put a JSON value by key, and list keys by prefix. Two backends
are provided: an in-memory store for tests and embedding, and a SQLite store
for the standalone server.

Neither backend offers compare-and-swap. Two concurrent pushes against the
same collection may both read the same snapshot and the later write wins.

CRITICAL: This module must have NO Flask dependencies.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Set, Union

logger = logging.getLogger(__name__)

__all__ = [
    "MarksyncError",
    "StorageUnavailable",
    "KeyValueStore",
    "MemoryStore",
    "SQLiteStore",
    "open_store",
]


class MarksyncError(RuntimeError):
    """Base class for Marksync runtime failures."""


class StorageUnavailable(MarksyncError):
    """The storage backend failed; the request may be retried.

    Attributes:
        operation: "get", "put" or "list"
        key: Key or prefix involved
    """

    def __init__(self, operation: str, key: str, cause: Optional[BaseException] = None) -> None:
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Storage {operation} failed for '{key}'{detail}")


class KeyValueStore:
    """Interface of the storage collaborator."""

    def get(self, key: str) -> Optional[Any]:
        """Get the JSON value stored at key, or None."""
        raise NotImplementedError

    def put(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value at key."""
        raise NotImplementedError

    def list_keys(self, prefix: str = "") -> Set[str]:
        """Get all keys starting with prefix."""
        raise NotImplementedError

    def close(self) -> None:
        """Release any resources held by the store."""


class MemoryStore(KeyValueStore):
    """Dictionary-backed store.

    Values are kept as JSON text so that callers never share mutable state
    with the store, mirroring a real remote store.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.put(key, value)

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def put(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageUnavailable("put", key, e) from e

    def list_keys(self, prefix: str = "") -> Set[str]:
        return {key for key in self._data if key.startswith(prefix)}

    def __len__(self) -> int:
        return len(self._data)


class SQLiteStore(KeyValueStore):
    """SQLite-backed store with a single key/value table.

    One connection is shared across threads and guarded by a lock; every
    statement is its own transaction.
    """

    def __init__(self, db_path: Union[Path, str]) -> None:
        """Open (and create if needed) the database.

        Args:
            db_path: Path to the SQLite database file, or ':memory:'
        """
        path_str = str(db_path)
        if path_str != ":memory:":
            Path(path_str).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(path_str, check_same_thread=False)
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailable("open", path_str, e) from e
        self.db_path = path_str
        logger.info(f"Opened SQLite store at {path_str}")

    def get(self, key: str) -> Optional[Any]:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT value FROM kv WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailable("get", key, e) from e
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except ValueError as e:
            raise StorageUnavailable("get", key, e) from e

    def put(self, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageUnavailable("put", key, e) from e
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT INTO kv (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, raw),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailable("put", key, e) from e

    def list_keys(self, prefix: str = "") -> Set[str]:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT key FROM kv WHERE key LIKE ? ESCAPE '\\'",
                    (escaped + "%",),
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageUnavailable("list", prefix, e) from e
        # LIKE is case-insensitive for ASCII
        return {row[0] for row in rows if row[0].startswith(prefix)}

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def open_store(db_path: Optional[Union[Path, str]] = None) -> KeyValueStore:
    """Open a SQLite store at db_path, or a MemoryStore if db_path is None."""
    if db_path is None:
        return MemoryStore()
    return SQLiteStore(db_path)
