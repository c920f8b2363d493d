"""
Shared metrics configuration for the query cache.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
from typing import Dict, Any, Optional


class MetricsCollector:
    """Prometheus metrics for a single query cache.

    Every collector owns its registry unless one is injected, so several caches
    can coexist in one process without duplicate time series.
    """

    def __init__(self, cache_name: str, registry: Optional[CollectorRegistry] = None):
        self.cache_name = cache_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up query cache metrics."""

        # Cache info
        self._metrics["query_cache_info"] = Info(
            "query_cache",
            "Query cache information",
            registry=self.registry
        )
        self._metrics["query_cache_info"].info({
            "cache": self.cache_name,
            "version": "1.0.0"
        })

        # Directory gauges
        self._metrics["queries"] = Gauge(
            "query_cache_queries",
            "Number of queries held by the cache",
            registry=self.registry
        )

        self._metrics["fetching_queries"] = Gauge(
            "query_cache_fetching_queries",
            "Number of queries currently fetching",
            registry=self.registry
        )

        # Fetch metrics
        self._metrics["fetches_total"] = Counter(
            "query_cache_fetches_total",
            "Total settled fetches",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["fetch_attempt_failures_total"] = Counter(
            "query_cache_fetch_attempt_failures_total",
            "Total failed fetch attempts, including retried ones",
            registry=self.registry
        )

        self._metrics["fetch_retries_total"] = Counter(
            "query_cache_fetch_retries_total",
            "Total fetch retries scheduled",
            registry=self.registry
        )

        self._metrics["fetch_duration_seconds"] = Histogram(
            "query_cache_fetch_duration_seconds",
            "Fetch duration in seconds, retries included",
            ["outcome"],
            registry=self.registry
        )

        # Lifecycle metrics
        self._metrics["cancellations_total"] = Counter(
            "query_cache_cancellations_total",
            "Total in-flight fetches cancelled",
            registry=self.registry
        )

        self._metrics["gc_evictions_total"] = Counter(
            "query_cache_gc_evictions_total",
            "Total queries evicted by garbage collection",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_fetch(self, outcome: str, duration: float):
        """Record a settled fetch."""
        self._metrics["fetches_total"].labels(outcome=outcome).inc()
        self._metrics["fetch_duration_seconds"].labels(outcome=outcome).observe(duration)

    def record_attempt_failure(self):
        """Record a failed fetch attempt."""
        self._metrics["fetch_attempt_failures_total"].inc()

    def record_retry(self):
        """Record a scheduled retry."""
        self._metrics["fetch_retries_total"].inc()

    def record_cancellation(self):
        """Record a cancelled fetch."""
        self._metrics["cancellations_total"].inc()

    def record_eviction(self):
        """Record a garbage-collected query."""
        self._metrics["gc_evictions_total"].inc()

    def set_directory_size(self, queries: int, fetching: int):
        """Set directory gauges."""
        self._metrics["queries"].set(queries)
        self._metrics["fetching_queries"].set(fetching)

    def get_sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read a sample value from the collector's registry."""
        return self.registry.get_sample_value(name, labels or {})


def get_metrics_collector(cache_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a cache."""
    return MetricsCollector(cache_name, registry)
