"""
Monitoring for TrackArena.

This package provides:
- Metrics collection (counters, gauges, timing histograms)
- Structured logging with JSON output and secret redaction
- Flask request timing middleware

Usage:
    from trackarena.monitoring import metrics, get_logger

    metrics.increment("payments_settled")
    metrics.timing("purchase_duration_ms", 1840.0)

    logger = get_logger(__name__)
    logger.info("Payment settled", extra={"reference": ref})
"""

from .logging import LoggingContext, configure_logging, get_logger
from .metrics import MetricsCollector, metrics
from .middleware import setup_request_logging

__all__ = [
    "MetricsCollector",
    "metrics",
    "get_logger",
    "configure_logging",
    "LoggingContext",
    "setup_request_logging",
]
