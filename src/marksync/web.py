"""Web API for Marksync.

This module builds the HTTP server that devices sync against.

Endpoints:
    GET  /api/sync                  Pull the global collection
    POST /api/sync                  Push bookmarks into the global collection
    GET  /api/sync/log              Activity log, newest first
    GET  /api/users/<name>/sync     Pull a user's collection
    POST /api/users/<name>/sync     Push into a user's collection
    GET  /api/stats                 Aggregate statistics
    GET  /api/health                Health check

All endpoints return JSON responses and allow cross-origin requests.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from flask import Flask, Response, jsonify
from flask_cors import CORS

from .core.config import Config
from .core.store import KeyValueStore, open_store
from .core.sync import SyncService, create_sync_server
from .core.timestamp_utils import Clock, format_timestamp, utc_now

logger = logging.getLogger(__name__)


def create_app(
    config_dir: Optional[Path] = None,
    store: Optional[KeyValueStore] = None,
    clock: Optional[Clock] = None,
    config: Optional[Config] = None,
) -> Flask:
    """Create and configure Flask application.

    Args:
        config_dir: Custom configuration directory (default: None)
        store: Storage backend; defaults to the SQLite file named in config
        clock: Source of the current time (default: wall clock)
        config: Already loaded Config, takes precedence over config_dir

    Returns:
        Configured Flask application
    """
    if config is None:
        config = Config(config_dir=config_dir)
    if store is None:
        store = open_store(config.get_database_file())

    service = SyncService(
        store,
        clock=clock or utc_now,
        log_limit=config.get_activity_log_limit(),
        merge_policy=config.get_merge_policy(),
    )

    app = create_sync_server(service)
    app.extensions["marksync"] = service
    CORS(app)  # Enable CORS for all routes

    logger.info(f"Web API initialized with merge policy '{service.merge_policy.value}'")

    # Error handlers
    @app.errorhandler(404)
    def not_found(error: Any) -> tuple[Response, int]:
        """Handle 404 errors."""
        return jsonify({"success": False, "error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error: Any) -> tuple[Response, int]:
        """Handle 405 errors."""
        return jsonify({"success": False, "error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error: Any) -> tuple[Response, int]:
        """Handle 500 errors."""
        logger.error(f"Internal error: {error}")
        return jsonify({"success": False, "error": "Internal server error"}), 500

    @app.route("/api/health", methods=["GET"])
    def health() -> tuple[Response, int]:
        """Health check endpoint."""
        return jsonify({
            "status": "ok",
            "timestamp": format_timestamp(service.clock()),
        }), 200

    return app


def run_server(config: Config, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the web server until interrupted.

    Args:
        config: Config instance
        host: Host to bind to (default from config)
        port: Port to bind to (default from config)
    """
    app = create_app(config=config)
    host = host or config.get_server_host()
    port = port or config.get_server_port()
    logger.info(f"Starting Marksync server on {host}:{port}")
    app.run(host=host, port=port, debug=False)
