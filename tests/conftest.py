"""Pytest fixtures for Marksync tests.

This module provides fixtures for test configuration, storage and a fixed clock.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from marksync.core.config import Config
from marksync.core.store import MemoryStore
from marksync.core.sync import SyncService

from tests.helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at FIXED_NOW."""
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    """Empty in-memory store."""
    return MemoryStore()


@pytest.fixture
def service(store: MemoryStore, clock: FakeClock) -> SyncService:
    """SyncService over the memory store with the fixed clock."""
    return SyncService(store, clock=clock)


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create temporary config directory for tests.

    Args:
        tmp_path: pytest temporary directory fixture

    Returns:
        Path to temporary config directory.
    """
    config_dir = tmp_path / "marksync_test"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def test_config(test_config_dir: Path) -> Config:
    """Create test configuration.

    Args:
        test_config_dir: Temporary config directory

    Returns:
        Config instance for testing.
    """
    return Config(config_dir=test_config_dir)
