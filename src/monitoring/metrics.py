"""
Metrics collection for EventShare.

Counters, gauges and latency histograms are kept in process and exported
in the Prometheus text format by ``GET /metrics``. One collector is
created at startup and handed to every component that records metrics.

Series recorded by the settlement core:
- lifecycle_transitions_total{from,to}: lifecycle transitions applied
- investments_recorded_total, tickets_recorded_total, payments_synced_total: booked payments
- settlement_batches_total{outcome}: payout transactions submitted or failed
- distributions_total{status}: distributions completed or failed
- settlement_batch_duration_ms, distribution_duration_ms: settlement latency
- http_requests_total, http_request_duration_ms, http_requests_active: API traffic
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

DEFAULT_PREFIX = "eventshare"

# API requests finish in milliseconds; a settlement batch waits for ledger close
REQUEST_BOUNDS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500)
SETTLEMENT_BOUNDS_MS = (50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000)

Labels = dict[str, str] | None


def bounds_for(name: str) -> tuple[float, ...]:
    """Histogram bucket bounds for a series name."""
    return REQUEST_BOUNDS_MS if name.startswith("http_") else SETTLEMENT_BOUNDS_MS


def _label_key(labels: Labels) -> str:
    if not labels:
        return ""
    return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))


def _series_line(metric: str, key: str, value: Any, extra: str = "") -> str:
    labels = ",".join(part for part in (key, extra) if part)
    return f"{metric}{{{labels}}} {value}" if labels else f"{metric} {value}"


def _collapse(values: dict[str, Any]) -> Any:
    """An unlabelled series reads as a bare number."""
    if set(values) == {""}:
        return values[""]
    return dict(values)


@dataclass
class HistogramBucket:
    le: float
    count: int = 0


@dataclass
class Histogram:
    """Cumulative latency histogram with a trailing +Inf bucket."""

    name: str
    bounds: tuple[float, ...] = SETTLEMENT_BOUNDS_MS
    buckets: list[HistogramBucket] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self):
        if not self.buckets:
            self.buckets = [HistogramBucket(le=b) for b in self.bounds]
            self.buckets.append(HistogramBucket(le=float("inf")))

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for bucket in self.buckets:
            if value <= bucket.le:
                bucket.count += 1

    def summary(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "sum": self.sum,
            "avg": self.sum / self.count if self.count else 0,
            "buckets": {str(b.le): b.count for b in self.buckets},
        }


class MetricsCollector:
    """Thread-safe store of labelled counters, gauges and histograms."""

    def __init__(self, prefix: str = DEFAULT_PREFIX):
        self.prefix = prefix
        self._lock = threading.RLock()
        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: dict[str, dict[str, Histogram]] = defaultdict(dict)
        self._start_time = time.time()

    # Counters

    def increment(self, name: str, value: int = 1, labels: Labels = None) -> None:
        with self._lock:
            self._counters[name][_label_key(labels)] += value

    def get_counter(self, name: str, labels: Labels = None) -> int:
        with self._lock:
            return self._counters.get(name, {}).get(_label_key(labels), 0)

    # Gauges

    def set_gauge(self, name: str, value: float, labels: Labels = None) -> None:
        with self._lock:
            self._gauges[name][_label_key(labels)] = value

    def increment_gauge(self, name: str, value: float = 1.0, labels: Labels = None) -> None:
        with self._lock:
            self._gauges[name][_label_key(labels)] += value

    def decrement_gauge(self, name: str, value: float = 1.0, labels: Labels = None) -> None:
        self.increment_gauge(name, -value, labels)

    def get_gauge(self, name: str, labels: Labels = None) -> float:
        with self._lock:
            return self._gauges.get(name, {}).get(_label_key(labels), 0.0)

    # Histograms

    def timing(self, name: str, value_ms: float, labels: Labels = None) -> None:
        """Record one latency observation in milliseconds."""
        key = _label_key(labels)
        with self._lock:
            series = self._histograms[name]
            if key not in series:
                series[key] = Histogram(name=name, bounds=bounds_for(name))
            series[key].observe(value_ms)

    def get_histogram(self, name: str, labels: Labels = None) -> Histogram | None:
        with self._lock:
            return self._histograms.get(name, {}).get(_label_key(labels))

    @contextmanager
    def timer(self, name: str, labels: Labels = None):
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timing(name, (time.perf_counter() - start) * 1000, labels)

    # Export

    def uptime_seconds(self) -> float:
        return time.time() - self._start_time

    def get_all(self) -> dict[str, Any]:
        """Snapshot served as JSON by ``GET /metrics/json``."""
        with self._lock:
            return {
                "uptime_seconds": self.uptime_seconds(),
                "counters": {name: _collapse(values) for name, values in self._counters.items()},
                "gauges": {name: _collapse(values) for name, values in self._gauges.items()},
                "histograms": {
                    name: {key or "_total": hist.summary() for key, hist in series.items()}
                    for name, series in self._histograms.items()
                },
            }

    def to_prometheus(self) -> str:
        """Render every series in the Prometheus text exposition format."""
        uptime = f"{self.prefix}_uptime_seconds"
        lines = [
            f"# HELP {uptime} Time since application start",
            f"# TYPE {uptime} gauge",
            f"{uptime} {self.uptime_seconds():.2f}",
            "",
        ]

        with self._lock:
            for kind, table in (("counter", self._counters), ("gauge", self._gauges)):
                for name, values in table.items():
                    metric = f"{self.prefix}_{name}"
                    lines.append(f"# TYPE {metric} {kind}")
                    lines.extend(_series_line(metric, key, value) for key, value in values.items())
                    lines.append("")

            for name, series in self._histograms.items():
                metric = f"{self.prefix}_{name}"
                lines.append(f"# TYPE {metric} histogram")
                for key, hist in series.items():
                    for bucket in hist.buckets:
                        le = "+Inf" if bucket.le == float("inf") else bucket.le
                        lines.append(_series_line(f"{metric}_bucket", key, bucket.count, f'le="{le}"'))
                    lines.append(_series_line(f"{metric}_sum", key, f"{hist.sum:.2f}"))
                    lines.append(_series_line(f"{metric}_count", key, hist.count))
                lines.append("")

        return "\n".join(lines)

    def reset(self) -> None:
        """Drop every series and restart the uptime clock."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()
