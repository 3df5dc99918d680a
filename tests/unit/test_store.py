"""Tests for the key-value stores."""

from __future__ import annotations

from pathlib import Path

import pytest

from marksync.core.store import (
    KeyValueStore,
    MemoryStore,
    SQLiteStore,
    StorageUnavailable,
    open_store,
)


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request: pytest.FixtureRequest, tmp_path: Path) -> KeyValueStore:
    """Each store backend."""
    if request.param == "memory":
        store: KeyValueStore = MemoryStore()
    else:
        store = SQLiteStore(tmp_path / "kv.db")
    yield store
    store.close()


@pytest.mark.unit
class TestStoreContract:
    """Behaviour shared by all backends."""

    def test_missing_key(self, any_store: KeyValueStore) -> None:
        assert any_store.get("nope") is None

    def test_put_then_get(self, any_store: KeyValueStore) -> None:
        value = [{"id": 1, "title": "Café", "syncedDevices": ["a"]}]
        any_store.put("global_bookmarks", value)
        assert any_store.get("global_bookmarks") == value

    def test_put_overwrites(self, any_store: KeyValueStore) -> None:
        any_store.put("k", "one")
        any_store.put("k", "two")
        assert any_store.get("k") == "two"

    def test_returned_values_are_copies(self, any_store: KeyValueStore) -> None:
        any_store.put("k", [1, 2])
        value = any_store.get("k")
        value.append(3)
        assert any_store.get("k") == [1, 2]

    def test_list_keys_by_prefix(self, any_store: KeyValueStore) -> None:
        any_store.put("device_a_last_sync", "x")
        any_store.put("device_b_last_sync", "y")
        any_store.put("global_bookmarks", [])

        assert any_store.list_keys("device_") == {"device_a_last_sync", "device_b_last_sync"}
        assert any_store.list_keys("") == {"device_a_last_sync", "device_b_last_sync", "global_bookmarks"}

    def test_list_keys_treats_wildcards_literally(self, any_store: KeyValueStore) -> None:
        any_store.put("user_x", 1)
        any_store.put("userAx", 2)
        any_store.put("USER_y", 3)

        assert any_store.list_keys("user_") == {"user_x"}

    def test_unserializable_value(self, any_store: KeyValueStore) -> None:
        with pytest.raises(StorageUnavailable) as exc_info:
            any_store.put("k", {"bad": object()})
        assert exc_info.value.operation == "put"
        assert any_store.get("k") is None


@pytest.mark.unit
class TestSQLiteStore:
    """SQLite-specific behaviour."""

    def test_persists_across_connections(self, tmp_path: Path) -> None:
        path = tmp_path / "sub" / "kv.db"
        store = SQLiteStore(path)
        store.put("k", {"a": 1})
        store.close()

        reopened = SQLiteStore(path)
        assert reopened.get("k") == {"a": 1}
        reopened.close()

    def test_closed_connection_raises_storage_unavailable(self, tmp_path: Path) -> None:
        store = SQLiteStore(tmp_path / "kv.db")
        store.close()

        with pytest.raises(StorageUnavailable):
            store.get("k")
        with pytest.raises(StorageUnavailable):
            store.put("k", 1)

    def test_open_store(self, tmp_path: Path) -> None:
        assert isinstance(open_store(), MemoryStore)
        store = open_store(tmp_path / "kv.db")
        assert isinstance(store, SQLiteStore)
        store.close()


@pytest.mark.unit
def test_storage_unavailable_message() -> None:
    error = StorageUnavailable("get", "global_bookmarks", OSError("disk gone"))
    assert "get" in str(error)
    assert "global_bookmarks" in str(error)
    assert "disk gone" in str(error)
    assert isinstance(error, RuntimeError)
