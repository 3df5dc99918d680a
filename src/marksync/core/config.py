"""Configuration management for Marksync.

This module handles loading and saving configuration to/from a JSON file.
The config directory can be customized via CLI argument.

The file is created with defaults on first use, including a freshly
generated UUID7 device id for this machine.

CRITICAL: This module must have NO Flask dependencies.
"""

from __future__ import annotations

import copy
import json
import logging
import socket
from pathlib import Path
from typing import Any, Dict, Optional

from uuid6 import uuid7

from .ledger import ACTIVITY_LOG_LIMIT
from .merge import MergePolicy
from .validation import ValidationError

logger = logging.getLogger(__name__)

__all__ = ["Config", "DEFAULT_CONFIG_DIR"]

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "marksync"
CONFIG_FILENAME = "config.json"
DEFAULT_PORT = 8787


class Config:
    """Manages configuration stored in JSON format.

    Attributes:
        config_dir: Path to the configuration directory
        config_file: Path to config.json
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_dir: Custom config directory path. If None, uses ~/.config/marksync/
        """
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.config_file = self.config_dir / CONFIG_FILENAME
        self.config_data = self.load_config()

    def _defaults(self) -> Dict[str, Any]:
        return {
            "database_file": str(self.config_dir / "marksync.db"),
            "device_id": uuid7().hex,
            "device_name": socket.gethostname() or "unknown",
            "log_level": "INFO",
            "server": {
                "host": "0.0.0.0",
                "port": DEFAULT_PORT,
            },
            "sync": {
                "server_url": f"http://127.0.0.1:{DEFAULT_PORT}",
                "merge_policy": MergePolicy.MERGE.value,
                "activity_log_limit": ACTIVITY_LOG_LIMIT,
                "timeout": 30,
            },
        }

    def load_config(self) -> Dict[str, Any]:
        """Load configuration, filling in and saving any missing defaults."""
        defaults = self._defaults()
        data: Dict[str, Any] = {}
        if self.config_file.exists():
            try:
                data = json.loads(self.config_file.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read {self.config_file}, using defaults: {e}")
                data = {}
            if not isinstance(data, dict):
                logger.warning(f"Ignoring non-object config in {self.config_file}")
                data = {}

        merged = copy.deepcopy(defaults)
        for key, value in data.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key].update(value)
            else:
                merged[key] = value

        if merged != data:
            self.save_config(merged)
        return merged

    def save_config(self, config: Dict[str, Any]) -> None:
        """Write configuration to config.json."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(
            json.dumps(config, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Dotted keys ("sync.server_url") reach into nested sections.
        """
        node: Any = self.config_data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value and save to file."""
        parts = key.split(".")
        node = self.config_data
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
        self.save_config(self.config_data)

    def get_database_file(self) -> Path:
        return Path(self.get("database_file"))

    def get_device_id(self) -> str:
        """Get this machine's device id."""
        return str(self.get("device_id"))

    def get_device_name(self) -> str:
        return str(self.get("device_name", "unknown"))

    def get_log_level(self) -> str:
        return str(self.get("log_level", "INFO")).upper()

    # ===== Server Configuration Methods =====

    def get_server_host(self) -> str:
        return str(self.get("server.host", "0.0.0.0"))

    def get_server_port(self) -> int:
        """Get the port the sync server listens on."""
        return int(self.get("server.port", DEFAULT_PORT))

    def set_server_port(self, port: int) -> None:
        """Set the sync server port."""
        if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
            raise ValidationError("port", "must be an integer between 1 and 65535")
        self.set("server.port", port)

    # ===== Sync Configuration Methods =====

    def get_server_url(self) -> str:
        """Get the base URL the sync client talks to."""
        return str(self.get("sync.server_url")).rstrip("/")

    def set_server_url(self, url: str) -> None:
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            raise ValidationError("server_url", "must start with http:// or https://")
        self.set("sync.server_url", url.rstrip("/"))

    def get_merge_policy(self) -> MergePolicy:
        """Get how pushes are combined with stored snapshots."""
        value = self.get("sync.merge_policy", MergePolicy.MERGE.value)
        try:
            return MergePolicy(value)
        except ValueError:
            raise ValidationError(
                "merge_policy",
                f"must be one of {', '.join(p.value for p in MergePolicy)}, got '{value}'",
            ) from None

    def set_merge_policy(self, policy: str) -> None:
        try:
            MergePolicy(policy)
        except ValueError:
            raise ValidationError(
                "merge_policy",
                f"must be one of {', '.join(p.value for p in MergePolicy)}",
            ) from None
        self.set("sync.merge_policy", policy)

    def get_activity_log_limit(self) -> int:
        """Get the maximum number of activity log entries kept."""
        value = self.get("sync.activity_log_limit", ACTIVITY_LOG_LIMIT)
        try:
            limit = int(value)
        except (TypeError, ValueError):
            raise ValidationError("activity_log_limit", "must be an integer") from None
        if limit < 1:
            raise ValidationError("activity_log_limit", "must be positive")
        return limit

    def get_timeout(self) -> float:
        return float(self.get("sync.timeout", 30))
