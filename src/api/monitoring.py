"""
Monitoring and metrics API endpoints.

This blueprint provides:
- /metrics: Prometheus-compatible metrics endpoint
- /metrics/json: JSON format metrics
- /health: Storage and ledger status
- /health/live: Liveness probe
- /health/ready: Readiness probe
"""

import time

from flask import Blueprint, Response, jsonify

from .utils import get_service

# Create the blueprint
monitoring_bp = Blueprint("monitoring", __name__)

# Track startup time
_startup_time = time.time()


@monitoring_bp.route("/metrics", methods=["GET"])
def prometheus_metrics():
    """
    Prometheus-compatible metrics endpoint.

    Returns metrics in Prometheus text exposition format.
    """
    return Response(
        get_service().metrics.to_prometheus(),
        mimetype="text/plain; charset=utf-8",
    )


@monitoring_bp.route("/metrics/json", methods=["GET"])
def json_metrics():
    return jsonify(get_service().metrics.get_all())


@monitoring_bp.route("/health", methods=["GET"])
def health():
    """
    Basic health check endpoint.

    Returns service status and backend information.
    """
    report = get_service().health()
    report["service"] = "EventShare API"
    report["uptime_seconds"] = round(time.time() - _startup_time, 2)
    return jsonify(report), 200 if report["status"] == "healthy" else 503


@monitoring_bp.route("/health/live", methods=["GET"])
def liveness():
    """
    Liveness probe.

    Returns 200 if the application is running.
    """
    return jsonify({"status": "alive"})


@monitoring_bp.route("/health/ready", methods=["GET"])
def readiness():
    """
    Readiness probe.

    Returns 200 once storage is reachable and the vault can protect secrets.
    """
    service = get_service()
    issues = []
    if not service.store.is_available():
        issues.append("storage unavailable")
    if not service.vault.is_configured:
        issues.append("vault key not configured")

    if issues:
        return jsonify({"status": "not_ready", "issues": issues}), 503
    return jsonify({"status": "ready"})
