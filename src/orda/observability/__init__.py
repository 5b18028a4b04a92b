"""Observability for the ORD aggregator.

Structured logging (structlog) and Prometheus-compatible metrics.

Example:
    >>> from orda.observability import get_logger, get_metrics
    >>>
    >>> logger = get_logger(__name__)
    >>> logger.info("orda.crawl.started", provider_id="s4")
    >>> get_metrics().increment_counter("orda_batches_committed_total")
"""

from orda.observability.logging import (
    LogSettings,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    is_debug_mode,
    sanitize_for_logging,
)
from orda.observability.metrics import (
    MetricsCollector,
    get_metrics,
    reset_metrics,
)

__all__ = [
    "LogSettings",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "get_metrics",
    "is_debug_mode",
    "reset_metrics",
    "MetricsCollector",
    "sanitize_for_logging",
]
