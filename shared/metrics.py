"""
Shared metrics for the document store access layer.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class MetricsCollector:
    """Centralized metrics collector for one connector instance."""

    def __init__(self, component: str, registry: Optional[CollectorRegistry] = None):
        self.component = component
        # Each collector owns its registry so several clients can live in one process.
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up connector metrics."""

        # Dispatch queue
        self._metrics["dispatch_requests_total"] = Counter(
            "docstore_dispatch_requests_total",
            "Total tasks settled by the dispatch queue",
            ["method", "outcome"],
            registry=self.registry
        )

        self._metrics["dispatch_duration_seconds"] = Histogram(
            "docstore_dispatch_duration_seconds",
            "Network call duration in seconds",
            ["method"],
            registry=self.registry
        )

        self._metrics["dispatch_in_flight"] = Gauge(
            "docstore_dispatch_in_flight",
            "Tasks currently being executed",
            registry=self.registry
        )

        self._metrics["dispatch_queue_depth"] = Gauge(
            "docstore_dispatch_queue_depth",
            "Tasks waiting for a free worker",
            registry=self.registry
        )

        # Coalescer
        self._metrics["coalesced_batches_total"] = Counter(
            "docstore_coalesced_batches_total",
            "Multi-get batches sent by the coalescer",
            ["entity_type"],
            registry=self.registry
        )

        self._metrics["coalesced_batch_size"] = Histogram(
            "docstore_coalesced_batch_size",
            "Number of ids per multi-get batch",
            ["entity_type"],
            buckets=(1, 2, 5, 10, 25, 50, 100, 250, 500, 1000),
            registry=self.registry
        )

        self._metrics["coalesced_dedup_total"] = Counter(
            "docstore_coalesced_dedup_total",
            "Fetches that joined an already pending request",
            ["entity_type"],
            registry=self.registry
        )

        # Read cache
        self._metrics["cache_hits_total"] = Counter(
            "docstore_cache_hits_total",
            "Total cache hits",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "docstore_cache_misses_total",
            "Total cache misses",
            ["cache_type"],
            registry=self.registry
        )

        # Invalidation channel
        self._metrics["invalidation_messages_total"] = Counter(
            "docstore_invalidation_messages_total",
            "Dirty notifications received",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["invalidation_reconnects_total"] = Counter(
            "docstore_invalidation_reconnects_total",
            "Invalidation channel reconnect attempts",
            ["outcome"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Observe the duration of the wrapped block."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            if operation_name in self._metrics:
                self._metrics[operation_name].labels(**labels).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).observe(value)

    def sample(self, metric_name: str, **labels) -> float:
        """Read the current value of a counter or gauge (0.0 when never touched)."""
        metric = self.get_metric(metric_name)
        if metric is None:
            return 0.0
        suffix = "_total" if isinstance(metric, Counter) else ""
        value = self.registry.get_sample_value(f"{metric._name}{suffix}", labels or None)
        return value or 0.0


def get_metrics_collector(component: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a connector component."""
    return MetricsCollector(component, registry)
