"""Pytest fixtures for web API tests.

Provides a Flask test client backed by an in-memory store and a fixed clock.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from flask import Flask
from flask.testing import FlaskClient

from marksync.core.store import MemoryStore
from marksync.web import create_app

from tests.helpers import FakeClock


@pytest.fixture
def web_app(test_config_dir: Path, store: MemoryStore, clock: FakeClock) -> Flask:
    """Create Flask app for testing.

    Args:
        test_config_dir: Temporary config directory
        store: In-memory store
        clock: Fixed clock

    Returns:
        Flask application instance
    """
    app = create_app(config_dir=test_config_dir, store=store, clock=clock)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(web_app: Flask) -> FlaskClient:
    """Create Flask test client.

    Args:
        web_app: Flask application

    Returns:
        Flask test client for making requests
    """
    return web_app.test_client()
