"""
Shared utilities for the EventShare API.

This module contains the authentication decorator, request-body parsing,
and the mapping from service results to HTTP responses used by every
blueprint.
"""

import secrets
from functools import wraps
from typing import Any

from flask import current_app, jsonify, request

from service import EventShareService

# Bounded parameters
MAX_PAYMENT_LIMIT = 200
DEFAULT_PAYMENT_LIMIT = 100

# ============================================================
# Error -> HTTP status mapping
# ============================================================

_STATUS_BY_CATEGORY = {
    "validation": 400,
    "state": 409,
    "business": 422,
    "infrastructure": 500,
}

_STATUS_BY_KIND = {
    "NOT_FOUND": 404,
    "DUPLICATE_RECORD": 409,
}


def error_status(error: dict[str, Any]) -> int:
    """HTTP status for a structured service error."""
    if error["kind"] in _STATUS_BY_KIND:
        return _STATUS_BY_KIND[error["kind"]]
    if error["category"] == "settlement":
        # Recoverable ledger failures are reported as temporarily unavailable
        return 503 if error["recoverable"] else 502
    return _STATUS_BY_CATEGORY.get(error["category"], 500)


def respond(ok: bool, payload: dict[str, Any], status: int = 200):
    """Turn a ``(success, payload)`` service result into a JSON response."""
    if ok:
        return jsonify({"success": True, "data": payload}), status
    error = payload["error"]
    return jsonify({"success": False, "error": error}), error_status(error)


def bad_request(message: str, field: str | None = None):
    error = {
        "kind": "VALIDATION_ERROR",
        "category": "validation",
        "message": message,
        "recoverable": True,
        "details": {"field": field} if field else {},
    }
    return jsonify({"success": False, "error": error}), 400


# ============================================================
# Request helpers
# ============================================================

def get_service() -> EventShareService:
    return current_app.extensions["eventshare"]


def json_body() -> dict[str, Any] | None:
    """The request body if it is a JSON object, else None."""
    data = request.get_json(silent=True)
    if data is None and not request.data:
        return {}
    return data if isinstance(data, dict) else None


def bounded_limit(raw: str | None, default: int = DEFAULT_PAYMENT_LIMIT, maximum: int = MAX_PAYMENT_LIMIT) -> int:
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    return max(1, min(value, maximum))


# ============================================================
# Authentication Decorator
# ============================================================

def require_api_key(f):
    """Decorator to require API key authentication."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_app.config.get("EVENTSHARE_REQUIRE_AUTH", True):
            return f(*args, **kwargs)

        api_key = current_app.config.get("EVENTSHARE_API_KEY")
        provided_key = request.headers.get("X-API-Key")

        if not provided_key:
            return jsonify({
                "success": False,
                "error": {"kind": "UNAUTHORIZED", "message": "API key required"},
                "hint": "Provide API key in X-API-Key header",
            }), 401

        if not api_key:
            return jsonify({
                "success": False,
                "error": {"kind": "UNAUTHORIZED", "message": "Server API key not configured"},
                "hint": "Set EVENTSHARE_API_KEY environment variable",
            }), 503

        if not secrets.compare_digest(provided_key, api_key):
            return jsonify({
                "success": False,
                "error": {"kind": "FORBIDDEN", "message": "Invalid API key"},
            }), 403

        return f(*args, **kwargs)
    return decorated_function
