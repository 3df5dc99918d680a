"""Shared helpers for Marksync tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
FIXED_NOW_STR = "2024-06-01T12:00:00.000Z"

DEVICE_A = "device-a"
DEVICE_B = "device-b"
DEVICE_C = "device-c"


class FakeClock:
    """Clock returning a controllable time, advanced manually."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_bookmark(
    bookmark_id: Any,
    updated_at: Optional[str] = "2024-01-01T00:00:00.000Z",
    created_at: Optional[str] = "2024-01-01T00:00:00.000Z",
    **fields: Any,
) -> Dict[str, Any]:
    """Build a bookmark dict with the given id and timestamps."""
    bookmark: Dict[str, Any] = {
        "id": bookmark_id,
        "url": f"https://example.com/{bookmark_id}",
        "title": f"Bookmark {bookmark_id}",
    }
    if created_at is not None:
        bookmark["createdAt"] = created_at
    if updated_at is not None:
        bookmark["updatedAt"] = updated_at
    bookmark.update(fields)
    return bookmark


def ids(bookmarks: List[Dict[str, Any]]) -> List[Any]:
    """Get the ids of bookmarks in order."""
    return [b["id"] for b in bookmarks]
