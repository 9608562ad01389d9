"""Prometheus metrics for zkcoord.

Provides metrics collection for the coordination recipes:
- Lock acquisitions by kind and result
- Time spent blocked waiting for locks
- Watch callbacks (and other deferred work) that raised
- Election outcomes

Usage:
    from zkcoord.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.lock_acquisitions_total.labels(kind="exclusive", result="acquired").inc()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)


class NoOpMetric:
    """No-op metric for when metrics are disabled."""

    def labels(self, **kwargs: Any) -> "NoOpMetric":
        """Return self for chaining."""
        return self

    def inc(self, amount: float = 1) -> None:
        """No-op."""
        pass

    def observe(self, amount: float) -> None:
        """No-op."""
        pass


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    lock_acquisitions_total: Any = field(default_factory=NoOpMetric)
    lock_wait_seconds: Any = field(default_factory=NoOpMetric)
    watch_callback_errors_total: Any = field(default_factory=NoOpMetric)
    elections_total: Any = field(default_factory=NoOpMetric)

    # Internal state
    _initialized: bool = field(default=False, repr=False)
    _enabled: bool = field(default=False, repr=False)

    def initialize(self, enabled: bool = True) -> None:
        """Initialize Prometheus metrics.

        Metric objects are registered with the default prometheus registry
        once per process; later calls are no-ops.
        """
        if self._initialized:
            return

        self._initialized = True

        if not enabled:
            logger.info("Metrics are disabled")
            return

        self.lock_acquisitions_total = Counter(
            "zkcoord_lock_acquisitions_total",
            "Lock acquisition attempts",
            ["kind", "result"],
        )

        self.lock_wait_seconds = Histogram(
            "zkcoord_lock_wait_seconds",
            "Time spent blocked waiting for a lock",
            ["kind"],
            buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0),
        )

        self.watch_callback_errors_total = Counter(
            "zkcoord_watch_callback_errors_total",
            "Watch callbacks and deferred work that raised an exception",
        )

        self.elections_total = Counter(
            "zkcoord_elections_total",
            "Election results observed by candidates",
            ["election", "outcome"],
        )

        self._enabled = True
        logger.info("Prometheus metrics initialized")

    @property
    def enabled(self) -> bool:
        return self._enabled

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if not self._enabled:
            return b"# Metrics disabled\n"
        return generate_latest(REGISTRY)


# Global metrics registry
metrics_registry = MetricsRegistry()


def get_metrics(enabled: bool = True) -> MetricsRegistry:
    """Get the global metrics registry.

    Initializes metrics on first access; ``enabled`` only matters for that
    first call.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize(enabled)
    return metrics_registry
