"""
Monitoring infrastructure for EventShare.

This package provides:
- Application metrics collection (counters, gauges, histograms)
- Structured logging with JSON output and secret redaction
- Request timing middleware

Usage:
    from monitoring import MetricsCollector, get_logger

    collector = MetricsCollector()
    collector.increment("settlement_batches_total", labels={"outcome": "submitted"})

    logger = get_logger(__name__)
    logger.info("Batch submitted", extra={"event_id": event_id, "batch": 2})
"""

from monitoring.logging import LoggingContext, configure_logging, get_logger
from monitoring.metrics import MetricsCollector
from monitoring.middleware import setup_request_logging

__all__ = [
    "LoggingContext",
    "MetricsCollector",
    "configure_logging",
    "get_logger",
    "setup_request_logging",
]
