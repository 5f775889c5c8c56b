"""
Metrics collection for TrackArena.

Thread-safe counters, gauges and timing histograms, exposed in the
Prometheus text format at /metrics.

Counters:  payments_received, payments_duplicate, payments_rejected,
           payments_settled, purchases_failed, venue_failures{venue},
           transfers_failed, payouts_sent, payouts_failed, bonus_won,
           entries_expired, phase_transitions{to}, persist_failures
Gauges:    round_pool, perpetual_reserve
Timings:   purchase_duration_ms, http_request_duration_ms
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

# Purchases include confirmation and a settle delay, so buckets reach a minute
DEFAULT_BUCKETS_MS = (10, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000)

Labels = dict[str, str] | None


@dataclass
class Histogram:
    """Cumulative histogram of observed values."""

    bounds: tuple = DEFAULT_BUCKETS_MS
    counts: list[int] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self):
        if not self.counts:
            self.counts = [0] * (len(self.bounds) + 1)

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for i, bound in enumerate(self.bounds):
            if value <= bound:
                self.counts[i] += 1
        self.counts[-1] += 1

    def buckets(self) -> list[tuple[str, int]]:
        labels = [str(b) for b in self.bounds] + ["+Inf"]
        return list(zip(labels, self.counts))


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Each series is keyed by metric name and a rendered label string, so
    `venue_failures{venue="jupiter"}` and `venue_failures{venue="pumpswap"}`
    are tracked separately.
    """

    def __init__(self, prefix: str = "trackarena"):
        self.prefix = prefix
        self._lock = threading.RLock()
        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: dict[str, dict[str, Histogram]] = defaultdict(dict)
        self._start_time = time.time()

    @staticmethod
    def _labels_key(labels: Labels) -> str:
        if not labels:
            return ""
        return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))

    # Counters

    def increment(self, name: str, value: int = 1, labels: Labels = None) -> None:
        with self._lock:
            self._counters[name][self._labels_key(labels)] += value

    def get_counter(self, name: str, labels: Labels = None) -> int:
        with self._lock:
            return self._counters.get(name, {}).get(self._labels_key(labels), 0)

    # Gauges

    def set_gauge(self, name: str, value: float, labels: Labels = None) -> None:
        with self._lock:
            self._gauges[name][self._labels_key(labels)] = value

    def increment_gauge(self, name: str, value: float = 1.0, labels: Labels = None) -> None:
        with self._lock:
            self._gauges[name][self._labels_key(labels)] += value

    def decrement_gauge(self, name: str, value: float = 1.0, labels: Labels = None) -> None:
        self.increment_gauge(name, -value, labels)

    def get_gauge(self, name: str, labels: Labels = None) -> float:
        with self._lock:
            return self._gauges.get(name, {}).get(self._labels_key(labels), 0.0)

    # Timings

    def timing(self, name: str, value_ms: float, labels: Labels = None) -> None:
        """Record a timing observation in milliseconds."""
        with self._lock:
            key = self._labels_key(labels)
            histogram = self._histograms[name].get(key)
            if histogram is None:
                histogram = self._histograms[name][key] = Histogram()
            histogram.observe(value_ms)

    def get_histogram(self, name: str, labels: Labels = None) -> Histogram | None:
        with self._lock:
            return self._histograms.get(name, {}).get(self._labels_key(labels))

    @contextmanager
    def timer(self, name: str, labels: Labels = None):
        """Context manager for timing code blocks."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timing(name, (time.perf_counter() - start) * 1000, labels)

    # Export

    def get_all(self) -> dict[str, Any]:
        """All metrics as a JSON-friendly dictionary."""

        def flatten(values: dict[str, Any]) -> Any:
            if set(values) == {""}:
                return values[""]
            return dict(values)

        with self._lock:
            return {
                "uptime_seconds": time.time() - self._start_time,
                "counters": {n: flatten(v) for n, v in self._counters.items()},
                "gauges": {n: flatten(v) for n, v in self._gauges.items()},
                "histograms": {
                    name: {
                        (key or "_total"): {
                            "count": h.count,
                            "sum": h.sum,
                            "avg": h.sum / h.count if h.count else 0,
                        }
                        for key, h in series.items()
                    }
                    for name, series in self._histograms.items()
                },
            }

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        p = self.prefix
        lines = [
            f"# HELP {p}_uptime_seconds Time since process start",
            f"# TYPE {p}_uptime_seconds gauge",
            f"{p}_uptime_seconds {time.time() - self._start_time:.2f}",
            "",
        ]

        with self._lock:
            for kind, families in (("counter", self._counters), ("gauge", self._gauges)):
                for name, series in families.items():
                    metric = f"{p}_{name}"
                    lines.append(f"# TYPE {metric} {kind}")
                    for key, value in series.items():
                        lines.append(f"{metric}{{{key}}} {value}" if key else f"{metric} {value}")
                    lines.append("")

            for name, series in self._histograms.items():
                metric = f"{p}_{name}"
                lines.append(f"# TYPE {metric} histogram")
                for key, hist in series.items():
                    sep = f"{key}," if key else ""
                    for le, count in hist.buckets():
                        lines.append(f'{metric}_bucket{{{sep}le="{le}"}} {count}')
                    suffix = f"{{{key}}}" if key else ""
                    lines.append(f"{metric}_sum{suffix} {hist.sum:.2f}")
                    lines.append(f"{metric}_count{suffix} {hist.count}")
                lines.append("")

        return "\n".join(lines)

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()


# Process-wide collector
metrics = MetricsCollector()
