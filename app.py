"""
Classroom Token Economy — Flask JSON API

Teachers run classrooms where students earn tokens for assignments and
tracked study time, and spend them in the class store or the student
marketplace.
"""

from __future__ import annotations

import logging
import os
from datetime import date
from typing import Any

import click
from flask import Flask, Response, jsonify
from werkzeug.exceptions import HTTPException

import database
from auth import auth_bp, login_manager
from blueprints import register_blueprints
from extensions import limiter

logger = logging.getLogger(__name__)


def _register_error_handlers(app: Flask) -> None:
    """JSON bodies for every error the API can return."""

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        message = e.description if e.code in (400, 429) and e.description else e.name
        if e.code == 401:
            message = "Authentication required"
        elif e.code == 403:
            message = "You do not have permission to perform this action"
        elif e.code == 404:
            message = "Not found"
        return jsonify({"error": message}), e.code

    @app.errorhandler(ValueError)
    def handle_value_error(e: ValueError):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500


def _register_cli(app: Flask) -> None:

    @app.cli.command("run-analytics")
    @click.option("--day", default=None, help="Snapshot date (YYYY-MM-DD), default yesterday.")
    @click.option("--weekly", is_flag=True, help="Generate weekly snapshots instead of daily.")
    def run_analytics_command(day, weekly):
        """Generate analytics snapshots for every active classroom."""
        from scheduler import run_daily_analytics, run_weekly_analytics

        target = date.fromisoformat(day) if day else None
        if weekly:
            results = run_weekly_analytics(app, target)
        else:
            results = run_daily_analytics(app, target)
        ok = sum(1 for r in results if r["success"])
        click.echo(f"Snapshots generated for {ok}/{len(results)} classrooms.")

    @app.cli.command("cleanup-sessions")
    def cleanup_sessions_command():
        """Close time sessions with stale heartbeats."""
        from scheduler import cleanup_sessions

        click.echo(f"Closed {cleanup_sessions(app)} abandoned sessions.")


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    from config import config_by_name
    env = "testing" if test_config and test_config.get("TESTING") else os.environ.get("FLASK_ENV", "development")
    cfg = config_by_name.get(env, config_by_name["development"])
    app.config.from_object(cfg)
    if test_config is not None:
        app.config.update(test_config)
    elif hasattr(cfg, "validate"):
        cfg.validate()

    app.json.sort_keys = app.config.get("JSON_SORT_KEYS", False)

    # Cache backend (Redis or in-memory fallback)
    from cache_backend import init_cache
    init_cache(app)

    # Structured logging
    from logging_config import init_logging
    init_logging(app)

    # Register database teardown, init-db command and lazy schema creation
    database.init_app(app)

    # Rate limiter (disabled in testing)
    limiter.init_app(app)
    if app.config.get("TESTING"):
        limiter.enabled = False

    # Register auth blueprint and login manager
    app.register_blueprint(auth_bp)
    login_manager.init_app(app)

    # Register all application blueprints
    register_blueprints(app)

    _register_error_handlers(app)
    _register_cli(app)

    # Security headers
    @app.after_request
    def set_security_headers(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if not app.debug and not app.testing:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    @app.route("/api/health")
    def health():
        return jsonify({"status": "ok"})

    # Start centralized scheduler (analytics, session cleanup, cache cleanup)
    if app.config.get("ENABLE_SCHEDULER") and not app.config.get("TESTING"):
        from scheduler import init_scheduler
        init_scheduler(app)

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5001)
