"""
Metrics — counters and timings for the image pipeline.

Kept in-process and exported as Prometheus text or JSON.

## Usage

    from kiln.observability.metrics import metrics

    metrics.increment("compressions_total", labels={"codec": "image/webp"})
    metrics.timing("compression_duration_seconds", 0.42)

    output = metrics.export_prometheus()
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional


def _labels_key(labels: Optional[Dict[str, str]]) -> str:
    if not labels:
        return ""
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


def _parse_key(key: str) -> Dict[str, str]:
    labels = {}
    if key:
        for pair in key.split(","):
            k, v = pair.split("=", 1)
            labels[k] = v
    return labels


@dataclass
class MetricPoint:
    """A single exported sample."""

    name: str
    value: float
    timestamp: float
    labels: Dict[str, str] = field(default_factory=dict)


class Counter:
    """A monotonically increasing counter."""

    def __init__(self, name: str, help_text: str = ""):
        self.name = name
        self.help_text = help_text
        self._values: Dict[str, float] = defaultdict(float)
        self._lock = Lock()

    def inc(self, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        key = _labels_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, labels: Optional[Dict[str, str]] = None) -> float:
        return self._values.get(_labels_key(labels), 0)

    def total(self) -> float:
        """Sum across all label sets."""
        return sum(self._values.values())

    def export(self) -> List[MetricPoint]:
        now = time.time()
        return [
            MetricPoint(self.name, value, now, _parse_key(key))
            for key, value in self._values.items()
        ]


class Histogram:
    """Bucketed distribution of observed values (seconds)."""

    DEFAULT_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, float("inf"))

    def __init__(self, name: str, help_text: str = "", buckets: Optional[tuple] = None):
        self.name = name
        self.help_text = help_text
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._counts: Dict[str, Dict[float, int]] = defaultdict(lambda: defaultdict(int))
        self._sums: Dict[str, float] = defaultdict(float)
        self._totals: Dict[str, int] = defaultdict(int)
        self._lock = Lock()

    def observe(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        key = _labels_key(labels)
        with self._lock:
            self._sums[key] += value
            self._totals[key] += 1
            for bucket in self.buckets:
                if value <= bucket:
                    self._counts[key][bucket] += 1
                    break

    def count(self) -> int:
        return sum(self._totals.values())

    def export(self) -> List[MetricPoint]:
        points = []
        now = time.time()

        for key in set(self._sums) | set(self._counts):
            labels = _parse_key(key)

            cumulative = 0
            for bucket in self.buckets:
                cumulative += self._counts[key].get(bucket, 0)
                le = str(bucket) if bucket != float("inf") else "+Inf"
                points.append(
                    MetricPoint(f"{self.name}_bucket", cumulative, now, {**labels, "le": le})
                )

            points.append(MetricPoint(f"{self.name}_sum", self._sums[key], now, labels))
            points.append(MetricPoint(f"{self.name}_count", self._totals[key], now, labels))

        return points


class MetricsRegistry:
    """Central registry with Prometheus and JSON export."""

    def __init__(self, prefix: str = "kiln"):
        self.prefix = prefix
        self._counters: Dict[str, Counter] = {}
        self._histograms: Dict[str, Histogram] = {}
        self._lock = Lock()

        self._register_common_metrics()

    def _register_common_metrics(self) -> None:
        self.counter("compressions_total", "Derivatives produced, by codec")
        self.counter("compression_errors_total", "Pipeline invocations that failed")
        self.counter("encode_attempts_total", "Individual encode calls, by codec")
        self.counter("codec_fallback_total", "Results produced by the fallback codec")
        self.counter("budget_unmet_total", "Results over budget at minimum quality")
        self.histogram("compression_duration_seconds", "Pipeline duration per derivative")

    def counter(self, name: str, help_text: str = "") -> Counter:
        """Get or create a counter."""
        full_name = f"{self.prefix}_{name}"
        with self._lock:
            if full_name not in self._counters:
                self._counters[full_name] = Counter(full_name, help_text)
            return self._counters[full_name]

    def histogram(self, name: str, help_text: str = "") -> Histogram:
        """Get or create a histogram."""
        full_name = f"{self.prefix}_{name}"
        with self._lock:
            if full_name not in self._histograms:
                self._histograms[full_name] = Histogram(full_name, help_text)
            return self._histograms[full_name]

    def increment(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        self.counter(name).inc(value, labels)

    def timing(self, name: str, seconds: float, labels: Optional[Dict[str, str]] = None) -> None:
        self.histogram(name).observe(seconds, labels)

    def reset(self) -> None:
        """Drop all recorded values and re-register the defaults."""
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        self._register_common_metrics()

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []

        for kind, family in (("counter", self._counters), ("histogram", self._histograms)):
            for metric in family.values():
                lines.append(f"# HELP {metric.name} {metric.help_text}")
                lines.append(f"# TYPE {metric.name} {kind}")
                for point in metric.export():
                    lines.append(f"{point.name}{self._format_labels(point.labels)} {point.value}")

        return "\n".join(lines)

    def export_json(self) -> Dict[str, Any]:
        """Export totals as JSON."""
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "counters": {name: c.total() for name, c in self._counters.items()},
            "histograms": {
                name: {"sum": sum(h._sums.values()), "count": h.count()}
                for name, h in self._histograms.items()
            },
        }

    def _format_labels(self, labels: Dict[str, str]) -> str:
        if not labels:
            return ""
        pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(pairs) + "}"


# Global metrics instance
metrics = MetricsRegistry()
