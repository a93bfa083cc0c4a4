"""
Tests for openmkt.monitoring.metrics.
"""

from openmkt.monitoring.metrics import (
    Counter,
    MetricsRegistry,
    get_metrics_registry,
    identity_resolutions_total,
)


class TestCounter:
    """Tests for Counter."""

    def test_inc_per_label_set(self):
        counter = Counter("c", "test", labels=["status"])

        counter.inc(status="resolved")
        counter.inc(status="resolved")
        counter.inc(status="unresolved")

        assert counter.value(status="resolved") == 2
        assert counter.value(status="unresolved") == 1
        assert counter.value(status="fallback") == 0

    def test_cardinality_cap(self):
        counter = Counter("c", "test", labels=["did"], _max_cardinality=2)

        for i in range(5):
            counter.inc(did=f"did:plc:{i}")

        assert len(counter.collect()) == 2


class TestMetricsRegistry:
    """Tests for the registry and Prometheus export."""

    def test_counter_is_shared_by_name(self):
        registry = MetricsRegistry(prefix="t")
        first = registry.counter("events_total", "Events")
        second = registry.counter("events_total", "Events")
        assert first is second
        assert first.name == "t_events_total"

    def test_prometheus_format(self):
        registry = MetricsRegistry(prefix="t")
        registry.counter("refreshes_total", "Refreshes", ["kind"]).inc(kind="dpop")
        histogram = registry.histogram("duration_seconds", "Duration", buckets=[0.5, 1.0])
        histogram.observe(0.7)

        text = registry.to_prometheus_format()

        assert "# TYPE t_refreshes_total counter" in text
        assert 't_refreshes_total{kind="dpop"} 1.0' in text
        assert 't_duration_seconds_bucket{le="0.5"} 0' in text
        assert 't_duration_seconds_bucket{le="1.0"} 1' in text
        assert 't_duration_seconds_bucket{le="+Inf"} 1' in text
        assert "t_duration_seconds_count 1" in text
        assert histogram.count() == 1

    def test_global_registry(self):
        registry = get_metrics_registry()
        assert registry.prefix == "openmkt"
        assert identity_resolutions_total.name == "openmkt_identity_resolutions_total"
