"""Bookmark merge engine for Marksync.

This module reconciles the stored snapshot of a collection with the
bookmarks pushed by one device.

Rules per incoming bookmark:
- Unknown id: added as-is, synced by the pushing device only.
- Known id, incoming strictly newer (by updatedAt): incoming content wins.
- Known id, incoming older or equal: stored content is kept.

In every case the pushing device is added to syncedDevices and
lastSyncTime is stamped. The result is ordered by createdAt, newest first.

CRITICAL: This module must have NO Flask dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List

from .timestamp_utils import Clock, format_timestamp, parse_timestamp, utc_now

__all__ = [
    "MergeDecision",
    "MergePolicy",
    "MergeResult",
    "merge_bookmarks",
    "overwrite_bookmarks",
    "sort_snapshot",
]

Bookmark = Dict[str, Any]


class MergeDecision(Enum):
    """What the merge did with one incoming bookmark."""

    ADDED = "added"
    ACCEPTED_INCOMING = "accepted_incoming"
    KEPT_EXISTING = "kept_existing"


class MergePolicy(Enum):
    """How a push is combined with the stored snapshot."""

    MERGE = "merge"  # per-bookmark, newest updatedAt wins
    OVERWRITE = "overwrite"  # incoming replaces the snapshot


@dataclass
class MergeResult:
    """Result of a merge operation.

    Attributes:
        bookmarks: The merged snapshot, createdAt descending
        decisions: Bookmark id to the decision taken for it
    """

    bookmarks: List[Bookmark]
    decisions: Dict[Any, MergeDecision] = field(default_factory=dict)

    def count(self, decision: MergeDecision) -> int:
        """Number of bookmarks that received the given decision."""
        return sum(1 for d in self.decisions.values() if d is decision)

    @property
    def added(self) -> int:
        return self.count(MergeDecision.ADDED)

    @property
    def accepted(self) -> int:
        return self.count(MergeDecision.ACCEPTED_INCOMING)

    @property
    def kept(self) -> int:
        return self.count(MergeDecision.KEPT_EXISTING)


def _with_device(devices: Any, device_id: str) -> List[str]:
    """Union of an existing device list and device_id, order preserved."""
    result: List[str] = []
    if isinstance(devices, (list, tuple)):
        for d in devices:
            if d not in result:
                result.append(d)
    if device_id not in result:
        result.append(device_id)
    return result


def sort_snapshot(bookmarks: Iterable[Bookmark]) -> List[Bookmark]:
    """Order bookmarks by createdAt, newest first.

    The sort is stable, so bookmarks with equal (or unparseable) createdAt
    keep their relative order.
    """
    return sorted(
        bookmarks,
        key=lambda b: parse_timestamp(b.get("createdAt")),
        reverse=True,
    )


def merge_bookmarks(
    existing: Iterable[Bookmark],
    incoming: Iterable[Bookmark],
    device_id: str,
    clock: Clock = utc_now,
) -> MergeResult:
    """Merge bookmarks pushed by a device into the stored snapshot.

    Neither input is modified. The clock is read once; every bookmark touched
    by this merge gets the same lastSyncTime.

    Args:
        existing: Stored snapshot
        incoming: Bookmarks pushed by the device, applied in order
        device_id: The pushing device
        clock: Source of the current time

    Returns:
        MergeResult with the new snapshot and a decision per incoming id
    """
    now = format_timestamp(clock())
    # dicts keep insertion order, which the stable sort relies on
    working: Dict[Any, Bookmark] = {}
    for bookmark in existing:
        working[bookmark.get("id")] = bookmark

    decisions: Dict[Any, MergeDecision] = {}

    for bookmark in incoming:
        bookmark_id = bookmark.get("id")
        current = working.get(bookmark_id)

        if current is None:
            working[bookmark_id] = {
                **bookmark,
                "syncedDevices": [device_id],
                "lastSyncTime": now,
            }
            decisions[bookmark_id] = MergeDecision.ADDED
            continue

        devices = _with_device(current.get("syncedDevices"), device_id)
        incoming_time = parse_timestamp(bookmark.get("updatedAt"))
        current_time = parse_timestamp(current.get("updatedAt"))

        if incoming_time > current_time:
            base = bookmark
            decisions[bookmark_id] = MergeDecision.ACCEPTED_INCOMING
        else:
            # Ties keep the stored content
            base = current
            decisions[bookmark_id] = MergeDecision.KEPT_EXISTING

        working[bookmark_id] = {
            **base,
            "syncedDevices": devices,
            "lastSyncTime": now,
        }

    return MergeResult(bookmarks=sort_snapshot(working.values()), decisions=decisions)


def overwrite_bookmarks(
    incoming: Iterable[Bookmark],
    device_id: str,
    clock: Clock = utc_now,
) -> MergeResult:
    """Replace a snapshot wholesale with the bookmarks pushed by a device.

    Every bookmark is treated as added and synced by device_id only.
    Duplicate ids keep the last occurrence.
    """
    now = format_timestamp(clock())
    working: Dict[Any, Bookmark] = {}
    for bookmark in incoming:
        working[bookmark.get("id")] = {
            **bookmark,
            "syncedDevices": [device_id],
            "lastSyncTime": now,
        }
    decisions = {bookmark_id: MergeDecision.ADDED for bookmark_id in working}
    return MergeResult(bookmarks=sort_snapshot(working.values()), decisions=decisions)
