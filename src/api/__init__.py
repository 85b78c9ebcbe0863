"""
EventShare API Package.

Flask app factory and blueprints for the EventShare settlement core.

Blueprints:
- events: Event lifecycle, investment, revenue and distribution operations
- monitoring: Health checks and metrics

Usage:
    from api import create_app
    from service import build_services

    app = create_app(build_services(SettlementConfig.from_env()))
"""

import os

from flask import Flask, jsonify

from api.events import events_bp
from api.monitoring import monitoring_bp
from monitoring.middleware import setup_request_logging
from service import EventShareService

# List of all blueprints for registration
# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (events_bp, ""),
    (monitoring_bp, ""),
]


def register_blueprints(app: Flask) -> None:
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)


def create_app(
    service: EventShareService,
    api_key: str | None = None,
    require_auth: bool | None = None,
) -> Flask:
    """
    Create the Flask application around a wired service.

    Args:
        service: The caller-facing service every route delegates to
        api_key: Expected X-API-Key value (default: EVENTSHARE_API_KEY)
        require_auth: Enforce the API key (default: EVENTSHARE_REQUIRE_AUTH, true)
    """
    app = Flask(__name__)
    if require_auth is None:
        require_auth = os.getenv("EVENTSHARE_REQUIRE_AUTH", "true").lower() == "true"
    app.config.update(
        EVENTSHARE_API_KEY=api_key or os.getenv("EVENTSHARE_API_KEY"),
        EVENTSHARE_REQUIRE_AUTH=require_auth,
        MAX_CONTENT_LENGTH=1024 * 1024,
    )
    app.extensions["eventshare"] = service

    register_blueprints(app)
    setup_request_logging(app, service.metrics)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            "success": False,
            "error": {"kind": "NOT_FOUND", "message": "Endpoint not found"},
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            "success": False,
            "error": {"kind": "METHOD_NOT_ALLOWED", "message": "Method not allowed"},
        }), 405

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({
            "success": False,
            "error": {"kind": "INTERNAL_ERROR", "message": "Internal server error"},
        }), 500

    return app


__all__ = ["ALL_BLUEPRINTS", "create_app", "register_blueprints"]
