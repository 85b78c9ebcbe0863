"""
Flask request middleware: request IDs, access logging and HTTP metrics.
"""

import time
import uuid

from flask import Flask, Response, g, request

from monitoring.logging import clear_request_context, get_logger, set_request_context
from monitoring.metrics import MetricsCollector

logger = get_logger("eventshare.request")

_HEX = frozenset("0123456789abcdef")


def setup_request_logging(app: Flask, collector: MetricsCollector) -> None:
    """
    Register hooks that tag each request with an ID, log it once it is
    answered and record ``http_*`` metrics into ``collector``.

    The request ID is taken from ``X-Request-ID`` when the caller sends one
    and echoed back on the response.
    """

    @app.before_request
    def start_request():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        g.start_time = time.perf_counter()
        set_request_context(request_id=g.request_id, method=request.method, path=request.path)
        collector.increment_gauge("http_requests_active")

    @app.after_request
    def finish_request(response: Response) -> Response:
        _record_request(collector, response.status_code)
        if "request_id" in g:
            response.headers["X-Request-ID"] = g.request_id
        return response

    @app.teardown_request
    def end_request(exception=None):
        clear_request_context()
        collector.decrement_gauge("http_requests_active")
        if exception is not None:
            logger.error(
                "Unhandled exception in request",
                exc_info=exception,
                extra={"request_id": g.get("request_id", "unknown"), "path": request.path},
            )


def _route_label() -> str:
    """The matched URL rule, or a normalized path when nothing matched."""
    if request.url_rule is not None:
        return request.url_rule.rule
    return _normalize_path(request.path)


def _record_request(collector: MetricsCollector, status_code: int) -> None:
    started = g.get("start_time")
    duration_ms = (time.perf_counter() - started) * 1000 if started is not None else 0.0
    route = _route_label()

    collector.increment(
        "http_requests_total",
        labels={"method": request.method, "path": route, "status": str(status_code)},
    )
    collector.timing("http_request_duration_ms", duration_ms, labels={"method": request.method, "path": route})

    if status_code >= 500:
        level = "error"
    elif status_code >= 400:
        level = "warning"
    else:
        level = "info"
    getattr(logger, level)(
        "%s %s -> %d", request.method, request.path, status_code,
        extra={"status_code": status_code, "duration_ms": round(duration_ms, 2)},
    )


def _normalize_path(path: str) -> str:
    """
    Collapse identifiers in a raw path so metric labels stay low-cardinality.

    Event IDs are 24 hex chars, distribution IDs start with ``dist_`` and
    ledger transaction hashes are 64 hex chars.
    """
    segments = []
    for part in path.strip("/").split("/"):
        lowered = part.lower()
        if part.startswith("dist_"):
            segments.append(":distribution_id")
        elif len(part) == 24 and set(lowered) <= _HEX:
            segments.append(":event_id")
        elif len(part) == 64 and set(lowered) <= _HEX:
            segments.append(":hash")
        elif part.isdigit():
            segments.append(":id")
        else:
            segments.append(part)
    return "/" + "/".join(segments)
