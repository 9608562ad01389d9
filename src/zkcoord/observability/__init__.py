"""Observability module for zkcoord.

Provides metrics and structured logging:
- Prometheus metrics for lock and election activity
- JSON structured logging with session and resource context
"""

from zkcoord.observability.logging import (
    LogContext,
    configure_logging,
    get_logger,
    resource_var,
    session_id_var,
)
from zkcoord.observability.metrics import (
    MetricsRegistry,
    get_metrics,
    metrics_registry,
)

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "LogContext",
    "session_id_var",
    "resource_var",
    # Metrics
    "MetricsRegistry",
    "metrics_registry",
    "get_metrics",
]
