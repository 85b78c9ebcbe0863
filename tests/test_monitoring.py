"""
Tests for structured logging, redaction and metrics collection.
"""

import json
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from monitoring.logging import (
    ConsoleFormatter,
    JSONFormatter,
    LoggingContext,
    get_request_context,
    redact_sensitive_data,
    redact_string,
)
from monitoring.metrics import MetricsCollector
from monitoring.middleware import _normalize_path

SEED = "SBXK7QZJ3M2VQ5HUGV6MS6HOYOQ5HJBC6EH6IFTUPGAX5TVCQ3DZEX4K"
PUBLIC = "GBXK7QZJ3M2VQ5HUGV6MS6HOYOQ5HJBC6EH6IFTUPGAX5TVCQ3DZEX4K"


def _record(msg, level=logging.INFO, **extra):
    record = logging.LogRecord("distribution", level, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRedaction:
    def test_ledger_seed(self):
        assert redact_string(f"signing with {SEED}") == "signing with [REDACTED_SEED]"

    def test_public_key_untouched(self):
        assert redact_string(f"paying {PUBLIC}") == f"paying {PUBLIC}"

    def test_vault_ciphertext(self):
        assert redact_string("stored ENC:1:QUJDRA==") == "stored [REDACTED_CIPHERTEXT]"

    def test_database_url_password(self):
        redacted = redact_string("postgresql://settle:hunter2@db:5432/eventshare")

        assert "hunter2" not in redacted
        assert "settle:" in redacted

    def test_key_value_credentials(self):
        assert "abc123" not in redact_string("api_key=abc123")

    def test_sensitive_fields(self):
        data = {
            "event_id": "evt-1",
            "custodial_secret_encrypted": "ENC:1:xyz",
            "nested": {"vault_key": "k", "note": f"seed {SEED}"},
        }

        redacted = redact_sensitive_data(data)

        assert redacted["event_id"] == "evt-1"
        assert redacted["custodial_secret_encrypted"] == "[REDACTED]"
        assert redacted["nested"]["vault_key"] == "[REDACTED]"
        assert SEED not in redacted["nested"]["note"]

    def test_max_depth(self):
        data = {"a": {"b": {"c": "d"}}}

        assert redact_sensitive_data(data, max_depth=1) == {"a": {"b": "[MAX_DEPTH_EXCEEDED]"}}


class TestFormatters:
    def test_json_output(self):
        line = JSONFormatter().format(_record("Settlement batch submitted", event_id="evt-1", batch=2))

        entry = json.loads(line)
        assert entry["level"] == "INFO"
        assert entry["logger"] == "distribution"
        assert entry["event_id"] == "evt-1"
        assert entry["batch"] == 2
        assert "location" not in entry

    def test_json_redacts_message_and_extras(self):
        line = JSONFormatter().format(_record(f"leaked {SEED}", logging.WARNING, secret="s3cret"))

        entry = json.loads(line)
        assert SEED not in line
        assert entry["secret"] == "[REDACTED]"
        assert entry["location"]["line"] == 10

    def test_json_includes_context(self):
        with LoggingContext(event_id="evt-9"):
            entry = json.loads(JSONFormatter().format(_record("inside")))

        assert entry["context"] == {"event_id": "evt-9"}
        assert get_request_context() == {}

    def test_console_redacts(self):
        line = ConsoleFormatter().format(_record(f"seed {SEED}", vault_key="k"))

        assert SEED not in line
        assert "vault_key=[REDACTED]" in line


class TestMetricsCollector:
    def test_counters_with_labels(self):
        metrics = MetricsCollector()
        metrics.increment("distributions_total", labels={"status": "completed"})
        metrics.increment("distributions_total", labels={"status": "completed"})
        metrics.increment("distributions_total", labels={"status": "failed"})

        assert metrics.get_counter("distributions_total", labels={"status": "completed"}) == 2
        assert metrics.get_counter("distributions_total", labels={"status": "failed"}) == 1
        assert metrics.get_counter("distributions_total") == 0

    def test_gauges(self):
        metrics = MetricsCollector()
        metrics.increment_gauge("http_requests_active")
        metrics.increment_gauge("http_requests_active")
        metrics.decrement_gauge("http_requests_active")

        assert metrics.get_gauge("http_requests_active") == 1.0

    def test_timer(self):
        metrics = MetricsCollector()

        with metrics.timer("settlement_batch_duration_ms"):
            pass

        histogram = metrics.get_histogram("settlement_batch_duration_ms")
        assert histogram.count == 1
        assert histogram.buckets[-1].count == 1

    def test_request_histograms_use_short_buckets(self):
        metrics = MetricsCollector()
        metrics.timing("http_request_duration_ms", 3)
        metrics.timing("settlement_batch_duration_ms", 3)

        assert metrics.get_histogram("http_request_duration_ms").buckets[0].le == 5
        assert metrics.get_histogram("settlement_batch_duration_ms").buckets[0].le == 50

    def test_prometheus_format(self):
        metrics = MetricsCollector()
        metrics.increment("tickets_recorded_total", 3)
        metrics.timing("distribution_duration_ms", 120, labels={"event": "x"})

        text = metrics.to_prometheus()

        assert "# TYPE eventshare_tickets_recorded_total counter" in text
        assert "eventshare_tickets_recorded_total 3" in text
        assert 'eventshare_distribution_duration_ms_bucket{event="x",le="250"} 1' in text
        assert 'eventshare_distribution_duration_ms_count{event="x"} 1' in text

    def test_get_all_and_reset(self):
        metrics = MetricsCollector()
        metrics.increment("investments_recorded_total")

        assert metrics.get_all()["counters"]["investments_recorded_total"] == 1

        metrics.reset()
        assert metrics.get_all()["counters"] == {}


class TestNormalizePath:
    def test_event_and_distribution_ids(self):
        assert _normalize_path("/events/0123456789abcdef01234567/payout") == "/events/:event_id/payout"
        assert _normalize_path("/distributions/dist_abc") == "/distributions/:distribution_id"

    def test_plain_paths(self):
        assert _normalize_path("/health/ready") == "/health/ready"
        assert _normalize_path("/") == "/"
