"""
Observability Module
====================

Logging and metrics for the BigQuery ingestion source.

Components:
- metrics: Prometheus metrics in a per-source registry
- logging: JSON logging with thread-local context

Usage:
    from observability import MetricsCollector, configure_logging, log_context

    configure_logging(level="INFO", json_format=True)
    metrics = MetricsCollector()

    with log_context(table="orders"):
        logger.info("Reading page")
"""

from .metrics.collector import MetricsCollector
from .logging.structured_logger import configure_logging, log_context

__version__ = "1.0.0"
__all__ = ["MetricsCollector", "configure_logging", "log_context"]
