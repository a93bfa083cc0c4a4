"""
Open Market - In-Process Metrics

Counters and histograms for the data-access core, exportable in Prometheus
text format.

Metrics Categories:
- Identity resolution outcomes
- Aggregation failures by cause and pass duration
- DPoP nonce retries
- Token refresh and delegated token outcomes
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, cast

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_BUCKETS = [0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 8.0, 15.0, 30.0]


@dataclass
class Counter:
    """A monotonically increasing counter."""
    name: str
    description: str
    labels: list[str] = field(default_factory=list)
    _values: dict[tuple[str, ...], float] = field(default_factory=dict)
    _max_cardinality: int = 1000
    _cardinality_warned: bool = field(default=False, repr=False)

    def inc(self, value: float = 1.0, **labels: str) -> None:
        """Increment the counter, dropping label sets past the cardinality cap."""
        key = self._label_key(labels)

        if key not in self._values and len(self._values) >= self._max_cardinality:
            if not self._cardinality_warned:
                logger.warning(
                    "metric_cardinality_limit",
                    metric=self.name,
                    limit=self._max_cardinality,
                )
                self._cardinality_warned = True
            return

        self._values[key] = self._values.get(key, 0) + value

    def value(self, **labels: str) -> float:
        """Current value for one label set."""
        return self._values.get(self._label_key(labels), 0.0)

    def _label_key(self, labels: dict[str, str]) -> tuple[str, ...]:
        return tuple(labels.get(name, "") for name in self.labels)

    def collect(self) -> list[dict[str, Any]]:
        """Collect all metric values."""
        return [
            {
                "name": self.name,
                "type": "counter",
                "labels": dict(zip(self.labels, key, strict=False)),
                "value": value,
            }
            for key, value in self._values.items()
        ]


@dataclass
class Histogram:
    """A metric that samples observations into buckets."""
    name: str
    description: str
    labels: list[str] = field(default_factory=list)
    buckets: list[float] = field(default_factory=lambda: list(DEFAULT_BUCKETS))
    _stats: dict[tuple[str, ...], dict[str, Any]] = field(default_factory=dict)

    def observe(self, value: float, **labels: str) -> None:
        key = self._label_key(labels)

        if key not in self._stats:
            self._stats[key] = {
                "count": 0,
                "sum": 0.0,
                "bucket_counts": dict.fromkeys([*self.buckets, float("inf")], 0),
            }

        stats = self._stats[key]
        stats["count"] += 1
        stats["sum"] += value
        for bucket in stats["bucket_counts"]:
            if value <= bucket:
                stats["bucket_counts"][bucket] += 1

    def count(self, **labels: str) -> int:
        stats = self._stats.get(self._label_key(labels))
        return stats["count"] if stats else 0

    def _label_key(self, labels: dict[str, str]) -> tuple[str, ...]:
        return tuple(labels.get(name, "") for name in self.labels)

    def collect(self) -> list[dict[str, Any]]:
        return [
            {
                "name": self.name,
                "type": "histogram",
                "labels": dict(zip(self.labels, key, strict=False)),
                "buckets": stats["bucket_counts"].copy(),
                "sum": stats["sum"],
                "count": stats["count"],
            }
            for key, stats in self._stats.items()
        ]


# =============================================================================
# Metrics Registry
# =============================================================================

class MetricsRegistry:
    """
    Central registry for all metrics.

    Usage:
        metrics = MetricsRegistry()
        resolutions = metrics.counter(
            "identity_resolutions_total",
            "Identity resolutions by outcome",
            ["status"],
        )
        resolutions.inc(status="resolved")
    """

    def __init__(self, prefix: str = "openmkt"):
        self.prefix = prefix
        self._metrics: dict[str, Counter | Histogram] = {}
        self._start_time = time.time()

    def counter(
        self,
        name: str,
        description: str,
        labels: list[str] | None = None,
    ) -> Counter:
        """Create or get a counter metric."""
        full_name = f"{self.prefix}_{name}"
        if full_name not in self._metrics:
            self._metrics[full_name] = Counter(
                name=full_name,
                description=description,
                labels=labels or [],
            )
        return cast(Counter, self._metrics[full_name])

    def histogram(
        self,
        name: str,
        description: str,
        labels: list[str] | None = None,
        buckets: list[float] | None = None,
    ) -> Histogram:
        """Create or get a histogram metric."""
        full_name = f"{self.prefix}_{name}"
        if full_name not in self._metrics:
            self._metrics[full_name] = Histogram(
                name=full_name,
                description=description,
                labels=labels or [],
                buckets=buckets or list(DEFAULT_BUCKETS),
            )
        return cast(Histogram, self._metrics[full_name])

    def collect_all(self) -> list[dict[str, Any]]:
        """Collect all metrics."""
        results = []
        for metric in self._metrics.values():
            results.extend(metric.collect())
        return results

    def to_prometheus_format(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []

        for metric in self._metrics.values():
            lines.append(f"# HELP {metric.name} {metric.description}")

            if isinstance(metric, Counter):
                lines.append(f"# TYPE {metric.name} counter")
                for item in metric.collect():
                    label_str = self._format_labels(item["labels"])
                    lines.append(f"{metric.name}{label_str} {item['value']}")

            else:
                lines.append(f"# TYPE {metric.name} histogram")
                for item in metric.collect():
                    base_labels = item["labels"]
                    for bucket, count in item["buckets"].items():
                        le = "+Inf" if bucket == float("inf") else str(bucket)
                        label_str = self._format_labels({**base_labels, "le": le})
                        lines.append(f"{metric.name}_bucket{label_str} {count}")

                    label_str = self._format_labels(base_labels)
                    lines.append(f"{metric.name}_sum{label_str} {item['sum']}")
                    lines.append(f"{metric.name}_count{label_str} {item['count']}")

        lines.append(f"{self.prefix}_uptime_seconds {time.time() - self._start_time:.3f}")
        return "\n".join(lines) + "\n"

    @staticmethod
    def _format_labels(labels: dict[str, str]) -> str:
        if not labels:
            return ""
        pairs = [f'{k}="{v}"' for k, v in labels.items()]
        return "{" + ",".join(pairs) + "}"


metrics = MetricsRegistry()

# Identity Metrics
identity_resolutions_total = metrics.counter(
    "identity_resolutions_total",
    "Identity resolutions by outcome",
    ["status"],
)

# Aggregation Metrics
aggregation_failures_total = metrics.counter(
    "aggregation_failures_total",
    "Per-identity aggregation failures by cause",
    ["cause"],
)

aggregation_duration_seconds = metrics.histogram(
    "aggregation_duration_seconds",
    "Wall time of one aggregation pass",
)

# Auth Metrics
dpop_nonce_retries_total = metrics.counter(
    "dpop_nonce_retries_total",
    "Requests re-signed after a server nonce challenge",
    ["outcome"],
)

token_refreshes_total = metrics.counter(
    "token_refreshes_total",
    "Access token refreshes by session kind and outcome",
    ["kind", "outcome"],
)

delegated_tokens_total = metrics.counter(
    "delegated_tokens_total",
    "Delegated token requests by outcome",
    ["outcome"],
)


def get_metrics_registry() -> MetricsRegistry:
    """Get the global metrics registry."""
    return metrics


__all__ = [
    "MetricsRegistry",
    "Counter",
    "Histogram",
    "metrics",
    "get_metrics_registry",
    "identity_resolutions_total",
    "aggregation_failures_total",
    "aggregation_duration_seconds",
    "dpop_nonce_retries_total",
    "token_refreshes_total",
    "delegated_tokens_total",
]
