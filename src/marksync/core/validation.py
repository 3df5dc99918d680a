"""Input validation for Marksync.

This module provides validation functions for sync requests.
All validators raise ValidationError with descriptive messages.

Only the structural shape of a payload is checked: bookmark fields other
than ``id`` are opaque to the merge engine.
"""

from __future__ import annotations

from typing import Any, Dict, List

__all__ = [
    "ValidationError",
    "validate_device_id",
    "validate_username",
    "validate_bookmarks",
    "validate_folders",
    "validate_limit",
]

MAX_DEVICE_ID_LENGTH = 128
MAX_USERNAME_LENGTH = 64
MAX_LOG_LIMIT = 1000


class ValidationError(ValueError):
    """Validation error with field and message attributes.

    Raised for caller errors that must not be retried unchanged.
    """

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"

    def __repr__(self) -> str:
        return f"ValidationError(field='{self.field}', message='{self.message}')"


def _require_name(value: Any, field_name: str, max_length: int) -> str:
    if value is None:
        raise ValidationError(field_name, "is required")
    if not isinstance(value, str):
        raise ValidationError(
            field_name, f"must be a string, got {type(value).__name__}"
        )
    if not value.strip():
        raise ValidationError(field_name, "is required")
    if value != value.strip():
        raise ValidationError(
            field_name, "must not start or end with whitespace"
        )
    if len(value) > max_length:
        raise ValidationError(
            field_name, f"must be at most {max_length} characters"
        )
    return value


def validate_device_id(device_id: Any) -> str:
    """Validate a device identifier.

    Ids are compared exactly, so padded ids are rejected rather than trimmed.
    """
    return _require_name(device_id, "deviceId", MAX_DEVICE_ID_LENGTH)


def validate_username(username: Any) -> str:
    """Validate a username used as a collection key component."""
    username = _require_name(username, "username", MAX_USERNAME_LENGTH)
    if "/" in username:
        raise ValidationError("username", "must not contain '/'")
    return username


def validate_bookmarks(bookmarks: Any) -> List[Dict[str, Any]]:
    """Validate the shape of an incoming bookmark list.

    Args:
        bookmarks: Decoded JSON payload

    Returns:
        The same list, once every item is known to be an object with an id

    Raises:
        ValidationError: If the payload is missing, not a list, or holds an
            item that is not an object with a non-empty ``id``
    """
    if bookmarks is None:
        raise ValidationError("bookmarks", "is required")
    if not isinstance(bookmarks, list):
        raise ValidationError(
            "bookmarks", f"must be a list, got {type(bookmarks).__name__}"
        )
    for i, bookmark in enumerate(bookmarks):
        if not isinstance(bookmark, dict):
            raise ValidationError(f"bookmarks[{i}]", "must be an object")
        bookmark_id = bookmark.get("id")
        if bookmark_id is None or bookmark_id == "":
            raise ValidationError(f"bookmarks[{i}].id", "is required")
        if isinstance(bookmark_id, (dict, list, bool)):
            raise ValidationError(
                f"bookmarks[{i}].id", "must be a string or number"
            )
    return bookmarks


def validate_folders(folders: Any) -> List[Any]:
    """Validate the optional folder list of a per-user push."""
    if folders is None:
        return []
    if not isinstance(folders, list):
        raise ValidationError(
            "folders", f"must be a list, got {type(folders).__name__}"
        )
    return folders


def validate_limit(value: Any, default: int = 100) -> int:
    """Parse a positive integer limit, capped at MAX_LOG_LIMIT."""
    if value is None or value == "":
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ValidationError("limit", f"must be an integer, got '{value}'") from None
    if limit < 1:
        raise ValidationError("limit", "must be positive")
    return min(limit, MAX_LOG_LIMIT)
