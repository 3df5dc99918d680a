"""Web API tests for general functionality.

Tests health check, error handling, CORS and app construction.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from flask.testing import FlaskClient

from marksync.core.config import Config
from marksync.core.merge import MergePolicy
from marksync.core.store import SQLiteStore
from marksync.web import create_app

from tests.helpers import FIXED_NOW_STR


@pytest.mark.web
class TestHealthCheck:
    """Test health check endpoint."""

    def test_health_check(self, client: FlaskClient) -> None:
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.content_type == "application/json"
        assert response.get_json() == {"status": "ok", "timestamp": FIXED_NOW_STR}


@pytest.mark.web
class TestErrorHandling:
    """Test API error handling."""

    def test_nonexistent_endpoint_returns_404(self, client: FlaskClient) -> None:
        response = client.get("/api/nonexistent")

        assert response.status_code == 404
        assert response.get_json()["error"] == "Not found"

    def test_wrong_method_returns_405(self, client: FlaskClient) -> None:
        response = client.delete("/api/sync")

        assert response.status_code == 405
        assert response.get_json()["success"] is False


@pytest.mark.web
class TestCORS:
    """Test CORS headers."""

    def test_cors_headers_present(self, client: FlaskClient) -> None:
        response = client.get("/api/health", headers={"Origin": "https://example.com"})

        assert "Access-Control-Allow-Origin" in response.headers

    def test_preflight(self, client: FlaskClient) -> None:
        response = client.options(
            "/api/sync",
            headers={
                "Origin": "chrome-extension://abc",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )

        assert response.status_code == 200
        assert "Access-Control-Allow-Origin" in response.headers


@pytest.mark.web
class TestCreateApp:
    """Test create_app wiring."""

    def test_uses_config_merge_policy(self, test_config_dir: Path) -> None:
        config = Config(config_dir=test_config_dir)
        config.set_merge_policy("overwrite")

        app = create_app(config=config, store=None)

        service = app.extensions["marksync"]
        assert service.merge_policy is MergePolicy.OVERWRITE
        assert isinstance(service.store, SQLiteStore)
        assert config.get_database_file().exists()
        service.store.close()

    def test_uses_config_log_limit(self, test_config_dir: Path) -> None:
        config = Config(config_dir=test_config_dir)
        config.set("sync.activity_log_limit", 2)

        app = create_app(config=config, store=None)

        assert app.extensions["marksync"].log_limit == 2
        app.extensions["marksync"].store.close()
