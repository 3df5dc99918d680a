"""Pytest fixtures for client/server sync tests.

This module provides fixtures for:
- Spawning a real sync server process on a free port
- Creating device configs that point at that server
"""

from __future__ import annotations

import os
import socket
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest
import requests

from marksync.core.config import Config
from marksync.core.sync_client import SyncClient

SRC_DIR = Path(__file__).parent.parent.parent / "src"


@dataclass
class ServerNode:
    """A sync server running in its own process."""

    config_dir: Path
    port: int
    process: Optional[subprocess.Popen] = None

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def is_server_running(self) -> bool:
        """Check if the sync server is responding."""
        try:
            resp = requests.get(f"{self.url}/api/health", timeout=1)
            return resp.status_code == 200
        except requests.exceptions.RequestException:
            return False

    def wait_for_server(self, timeout: float = 10.0) -> bool:
        """Wait for server to become available."""
        start = time.time()
        while time.time() - start < timeout:
            if self.process is not None and self.process.poll() is not None:
                return False
            if self.is_server_running():
                return True
            time.sleep(0.1)
        return False

    def stop_server(self) -> None:
        """Stop the sync server process."""
        if self.process:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
                self.process.wait()
            self.process = None


def find_free_port() -> int:
    """Find a free TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        return s.getsockname()[1]


def start_sync_server(node: ServerNode) -> subprocess.Popen:
    """Start a sync server process for the given node."""
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(
        p for p in (str(SRC_DIR), env.get("PYTHONPATH")) if p
    )

    cmd = [
        sys.executable,
        "-m", "marksync",
        "-d", str(node.config_dir),
        "serve",
        "--host", "127.0.0.1",
        "--port", str(node.port),
    ]

    node.process = subprocess.Popen(
        cmd,
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    return node.process


@pytest.fixture
def running_server(tmp_path: Path) -> Generator[ServerNode, None, None]:
    """Sync server with an empty SQLite store."""
    config_dir = tmp_path / "server"
    Config(config_dir=config_dir)
    node = ServerNode(config_dir=config_dir, port=find_free_port())

    start_sync_server(node)
    if not node.wait_for_server():
        node.stop_server()
        pytest.fail("Failed to start sync server")
    yield node
    node.stop_server()


@pytest.fixture
def make_client(
    tmp_path: Path, running_server: ServerNode
) -> Callable[..., SyncClient]:
    """Factory for clients of running_server with their own device id."""

    def factory(device_id: str, username: Optional[str] = None) -> SyncClient:
        config = Config(config_dir=tmp_path / device_id)
        config.set("device_id", device_id)
        config.set("device_name", device_id)
        config.set_server_url(running_server.url)
        config.set("sync.timeout", 5)
        return SyncClient(config, username=username)

    return factory
