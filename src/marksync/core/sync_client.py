"""Sync client for Marksync.

This module provides the device side of the sync protocol, allowing
this device to:
- Pull the shared collection (all of it, or only what changed)
- Push local bookmarks to be merged
- Query server health, statistics and the activity log

CRITICAL: This module must have NO Flask dependencies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from .config import Config
from .store import MarksyncError
from .timestamp_utils import format_timestamp, utc_now
from .validation import validate_bookmarks, validate_username

logger = logging.getLogger(__name__)


class SyncClientError(MarksyncError):
    """The sync server could not be reached or rejected the request.

    Attributes:
        status_code: HTTP status, or None if no response was received
        retryable: True when the same request may succeed later
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        self.retryable = status_code is None or status_code >= 500
        super().__init__(message)


@dataclass
class SyncResult:
    """Result of a sync operation."""

    success: bool
    pulled: int = 0  # Bookmarks received from server
    pushed: int = 0  # Bookmarks sent to server
    total: int = 0  # Bookmarks in the server's collection
    bookmarks: List[Dict[str, Any]] = field(default_factory=list)
    sync_time: Optional[str] = None
    errors: List[str] = field(default_factory=list)


class SyncClient:
    """Client for syncing with a Marksync server.

    Attributes:
        base_url: Server URL without trailing slash
        device_id: This device's id
    """

    def __init__(
        self,
        config: Config,
        session: Optional[requests.Session] = None,
        username: Optional[str] = None,
    ) -> None:
        """Initialize sync client.

        Args:
            config: Config instance
            session: requests session to use (default: a new one)
            username: Sync a user's collection instead of the global one
        """
        self.config = config
        self.base_url = config.get_server_url()
        self.device_id = config.get_device_id()
        self.device_name = config.get_device_name()
        self.timeout = config.get_timeout()
        self.username = validate_username(username) if username else None
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = f"marksync/{self.device_name}"

    @property
    def sync_path(self) -> str:
        if self.username:
            return f"/api/users/{self.username}/sync"
        return "/api/sync"

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise SyncClientError(f"Failed to connect to {url}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            detail = data.get("error") if isinstance(data, dict) else response.text
            raise SyncClientError(
                f"{method} {path} failed with {response.status_code}: {detail}",
                status_code=response.status_code,
            )
        if not isinstance(data, dict):
            raise SyncClientError(
                f"{method} {path} returned a non-JSON response",
                status_code=response.status_code,
            )
        return data

    def pull(self, full: bool = False) -> SyncResult:
        """Pull bookmarks from the server.

        Args:
            full: Get the whole collection instead of only the bookmarks
                updated since this device's last push

        Returns:
            SyncResult with the received bookmarks
        """
        params = {"deviceId": self.device_id}
        if not full:
            params["action"] = "pull"
        data = self._request("GET", self.sync_path, params=params)
        bookmarks = data.get("bookmarks") or []
        logger.info(
            f"Pulled {len(bookmarks)} bookmarks from {self.base_url} "
            f"({data.get('totalCount', 0)} total)"
        )
        return SyncResult(
            success=True,
            pulled=len(bookmarks),
            total=data.get("totalCount", 0),
            bookmarks=bookmarks,
            sync_time=data.get("serverTime"),
        )

    def push(
        self,
        bookmarks: List[Dict[str, Any]],
        action: str = "push",
        folders: Optional[List[Any]] = None,
    ) -> SyncResult:
        """Push local bookmarks to the server.

        Args:
            bookmarks: Local bookmarks, each with at least an "id"
            action: Action label recorded in the server's activity log
            folders: Folder list (user collections only)

        Returns:
            SyncResult with the merged collection returned by the server
        """
        validate_bookmarks(bookmarks)
        payload: Dict[str, Any] = {
            "deviceId": self.device_id,
            "bookmarks": bookmarks,
            "timestamp": format_timestamp(utc_now()),
            "action": action,
        }
        if folders is not None:
            payload["folders"] = folders
        data = self._request("POST", self.sync_path, json=payload)
        merged = data.get("bookmarks") or []
        logger.info(f"Pushed {len(bookmarks)} bookmarks to {self.base_url}")
        return SyncResult(
            success=True,
            pushed=data.get("syncedCount", len(bookmarks)),
            total=data.get("totalCount", len(merged)),
            bookmarks=merged,
            sync_time=data.get("syncTime"),
        )

    def sync(self, bookmarks: List[Dict[str, Any]]) -> SyncResult:
        """Push local bookmarks, then pull the merged collection.

        Errors are collected in the result instead of raised.
        """
        result = SyncResult(success=False)
        try:
            pushed = self.push(bookmarks, action="sync")
            result.pushed = pushed.pushed
            pulled = self.pull(full=True)
        except SyncClientError as e:
            logger.error(f"Sync with {self.base_url} failed: {e}")
            result.errors.append(str(e))
            return result

        result.success = True
        result.pulled = pulled.pulled
        result.total = pulled.total
        result.bookmarks = pulled.bookmarks
        result.sync_time = pushed.sync_time
        return result

    def activity(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Get the server's global activity log."""
        data = self._request("GET", "/api/sync/log", params={"limit": limit})
        return data.get("logs") or []

    def stats(self) -> Dict[str, Any]:
        """Get the server's aggregate statistics."""
        data = self._request("GET", "/api/stats")
        data.pop("success", None)
        return data

    def health(self) -> bool:
        """Check whether the server answers its health check."""
        try:
            data = self._request("GET", "/api/health")
        except SyncClientError as e:
            logger.warning(f"Health check failed: {e}")
            return False
        return data.get("status") == "ok"
