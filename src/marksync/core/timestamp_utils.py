"""Timestamp utilities for Marksync.

Bookmark timestamps travel as ISO-8601 strings. Parsing is lenient: any value
that cannot be understood is treated as the Unix epoch, so that a record with
a broken timestamp always loses a comparison instead of failing a merge.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Union

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# A zero-argument callable returning an aware UTC datetime.
Clock = Callable[[], datetime]

TimestampLike = Union[str, int, float, datetime, None]


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse a bookmark timestamp into an aware UTC datetime.

    Accepts ISO datetimes (``Z`` suffix, explicit offset, or naive which is
    read as UTC), bare dates, numeric epoch milliseconds and datetime objects.

    Args:
        value: Timestamp in any of the accepted forms

    Returns:
        Aware UTC datetime, or EPOCH if the value is missing or unparseable
    """
    if value is None or isinstance(value, bool):
        return EPOCH

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return EPOCH
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return EPOCH
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return EPOCH
    else:
        return EPOCH

    try:
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # Offsets that push the instant outside the datetime range
        return EPOCH


def format_timestamp(dt: datetime) -> str:
    """Format a datetime the way bookmark timestamps are stored.

    Args:
        dt: datetime (naive values are read as UTC)

    Returns:
        String like "2024-01-02T03:04:05.678Z"
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def normalize_timestamp(value: TimestampLike, clock: Clock = utc_now) -> str:
    """Return value as a stored timestamp string, defaulting to now.

    Strings are passed through unchanged so that the caller's own
    representation is what gets persisted.
    """
    if value is None or value == "":
        return format_timestamp(clock())
    if isinstance(value, str):
        return value
    return format_timestamp(parse_timestamp(value))
