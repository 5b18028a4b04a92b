"""Aggregator metrics collection.

Prometheus-compatible counters and histograms for the aggregation
pipeline. The collector is process-local; ``export_prometheus()`` renders
the text exposition format so an embedding service can serve it.

Example:
    >>> from orda.observability.metrics import get_metrics
    >>> metrics = get_metrics()
    >>> metrics.increment_counter("orda_documents_processed_total", {"status": "ok"})
    >>> print(metrics.export_prometheus())
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import ClassVar

LabelKey = tuple[tuple[str, str], ...]

# Crawl durations range from local fixtures to slow remote providers
DEFAULT_DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)


def _label_key(labels: dict[str, str] | None) -> LabelKey:
    return tuple(sorted((labels or {}).items()))


@dataclass
class Counter:
    """A monotonically increasing counter metric."""

    name: str
    help_text: str
    values: dict[LabelKey, float] = field(default_factory=dict)

    def increment(self, labels: dict[str, str] | None = None, value: float = 1.0) -> None:
        key = _label_key(labels)
        self.values[key] = self.values.get(key, 0.0) + value

    def get(self, labels: dict[str, str] | None = None) -> float:
        return self.values.get(_label_key(labels), 0.0)


@dataclass
class HistogramSeries:
    """Bucket counts, sum and count for one label combination."""

    buckets: dict[float, float]
    total: float = 0.0
    count: float = 0.0


@dataclass
class Histogram:
    """A histogram metric for measuring distributions."""

    name: str
    help_text: str
    buckets: tuple[float, ...] = DEFAULT_DURATION_BUCKETS
    values: dict[LabelKey, HistogramSeries] = field(default_factory=dict)

    def observe(self, value: float, labels: dict[str, str] | None = None) -> None:
        key = _label_key(labels)
        series = self.values.get(key)
        if series is None:
            series = HistogramSeries(buckets=dict.fromkeys(self.buckets, 0.0))
            self.values[key] = series
        # Buckets hold per-interval counts; export accumulates them
        for bound in self.buckets:
            if value <= bound:
                series.buckets[bound] += 1.0
                break
        series.total += value
        series.count += 1.0

    def get_count(self, labels: dict[str, str] | None = None) -> float:
        series = self.values.get(_label_key(labels))
        return series.count if series is not None else 0.0


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _format_labels(labels: LabelKey, extra: tuple[str, str] | None = None) -> str:
    pairs = list(labels)
    if extra is not None:
        pairs.append(extra)
    if not pairs:
        return ""
    return "{" + ",".join(f'{k}="{_escape_label_value(v)}"' for k, v in pairs) + "}"


class MetricsCollector:
    """Collects and exports aggregator metrics in Prometheus format.

    Thread-safe; the crawler's committer and readers may record
    concurrently.
    """

    DEFAULT_COUNTERS: ClassVar[dict[str, str]] = {
        "orda_documents_processed_total": "ORD documents run through the parser",
        "orda_validation_issues_total": "Validation issues reported, by category and severity",
        "orda_batches_committed_total": "Provider batches committed to the graph",
        "orda_conflicts_total": "Cross-document consistency conflicts detected",
        "orda_tombstones_applied_total": "Tombstones applied to the graph",
        "orda_entities_purged_total": "Tombstoned entities physically purged",
        "orda_fetch_retries_total": "Fetch retries against providers",
        "orda_provider_failures_total": "Provider crawls that failed after all retries",
        "orda_definitions_skipped_total": "Definition fetches skipped on unchanged lastUpdate",
    }

    DEFAULT_HISTOGRAMS: ClassVar[dict[str, str]] = {
        "orda_crawl_duration_seconds": "Provider crawl duration in seconds",
        "orda_commit_duration_seconds": "Batch commit duration in seconds",
    }

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, Counter] = {
            name: Counter(name=name, help_text=help_text)
            for name, help_text in self.DEFAULT_COUNTERS.items()
        }
        self._histograms: dict[str, Histogram] = {
            name: Histogram(name=name, help_text=help_text)
            for name, help_text in self.DEFAULT_HISTOGRAMS.items()
        }
        self._start_time = time.time()

    def increment_counter(
        self, name: str, labels: dict[str, str] | None = None, value: float = 1.0
    ) -> None:
        with self._lock:
            if name in self._counters:
                self._counters[name].increment(labels, value)

    def observe_histogram(
        self, name: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        with self._lock:
            if name in self._histograms:
                self._histograms[name].observe(value, labels)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            counter = self._counters.get(name)
            return counter.get(labels) if counter is not None else 0.0

    def get_histogram_count(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            histogram = self._histograms.get(name)
            return histogram.get_count(labels) if histogram is not None else 0.0

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines: list[str] = []

        with self._lock:
            for counter in self._counters.values():
                lines.append(f"# HELP {counter.name} {counter.help_text}")
                lines.append(f"# TYPE {counter.name} counter")
                if not counter.values:
                    lines.append(f"{counter.name} 0")
                for label_key, value in counter.values.items():
                    lines.append(f"{counter.name}{_format_labels(label_key)} {value}")

            for histogram in self._histograms.values():
                lines.append(f"# HELP {histogram.name} {histogram.help_text}")
                lines.append(f"# TYPE {histogram.name} histogram")
                for label_key, series in histogram.values.items():
                    cumulative = 0.0
                    for bound in histogram.buckets:
                        cumulative += series.buckets.get(bound, 0.0)
                        label_str = _format_labels(label_key, ("le", str(bound)))
                        lines.append(f"{histogram.name}_bucket{label_str} {cumulative}")
                    label_str = _format_labels(label_key, ("le", "+Inf"))
                    lines.append(f"{histogram.name}_bucket{label_str} {series.count}")
                    base = _format_labels(label_key)
                    lines.append(f"{histogram.name}_sum{base} {series.total}")
                    lines.append(f"{histogram.name}_count{base} {series.count}")

            uptime = time.time() - self._start_time
            lines.append("# HELP orda_process_uptime_seconds Time since collector start")
            lines.append("# TYPE orda_process_uptime_seconds gauge")
            lines.append(f"orda_process_uptime_seconds {uptime:.3f}")

        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """Reset all metrics to zero. Useful for testing."""
        with self._lock:
            for counter in self._counters.values():
                counter.values.clear()
            for histogram in self._histograms.values():
                histogram.values.clear()


_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _metrics_collector
    with _collector_lock:
        if _metrics_collector is None:
            _metrics_collector = MetricsCollector()
        return _metrics_collector


def reset_metrics() -> None:
    """Reset the global metrics collector. Useful for testing."""
    with _collector_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset()
