"""
Metrics Collector
=================

Prometheus metrics for the BigQuery ingestion source.

Every collector owns its own CollectorRegistry, so several sources (or
tests) can run in one process without clashing on metric names.
"""

import logging
from typing import Dict, Optional
import threading

from prometheus_client import (
    Counter, Gauge, Histogram,
    CollectorRegistry, generate_latest, start_http_server
)

logger = logging.getLogger(__name__)

METRIC_TYPES = {"counter": Counter, "gauge": Gauge, "histogram": Histogram}


class MetricsCollector:
    """
    Collects sync metrics in a private Prometheus registry.
    """

    METRIC_DEFINITIONS = {
        # Source metrics
        "bigquery_records_emitted": {
            "type": "counter",
            "description": "Records placed on the output channel",
            "labels": ["table_name", "mode"]
        },
        "bigquery_pages_fetched": {
            "type": "counter",
            "description": "Page queries run against BigQuery",
            "labels": ["table_name"]
        },
        "bigquery_sync_cycles": {
            "type": "counter",
            "description": "Completed sync cycles",
            "labels": []
        },
        "bigquery_tables_discovered": {
            "type": "gauge",
            "description": "Tables in the most recent cycle",
            "labels": []
        },
        "bigquery_cycle_duration_seconds": {
            "type": "histogram",
            "description": "Duration of sync cycles",
            "labels": []
        },

        # Daemon metrics
        "cdc_batches_flushed": {
            "type": "counter",
            "description": "Batches written to the data lake",
            "labels": ["table_name"]
        },
    }

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self._registry = registry or CollectorRegistry()
        self._metrics: Dict = {}
        self._lock = threading.Lock()
        self._init_metrics()

    def _init_metrics(self):
        """Register every defined metric in this collector's registry."""
        for name, definition in self.METRIC_DEFINITIONS.items():
            metric_class = METRIC_TYPES[definition["type"]]
            self._metrics[name] = metric_class(
                name, definition["description"], definition.get("labels", []), registry=self._registry
            )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def _child(self, metric_name: str, labels: Optional[Dict]):
        metric = self._metrics[metric_name]
        return metric.labels(**labels) if labels else metric

    # =========================================
    # METRIC RECORDING METHODS
    # =========================================

    def record_counter(self, metric_name: str, value: float = 1, labels: Optional[Dict] = None):
        """
        Increment a counter metric.

        Args:
            metric_name: Name of the metric
            value: Value to increment by
            labels: Label key-value pairs
        """
        with self._lock:
            self._child(metric_name, labels).inc(value)

    def record_gauge(self, metric_name: str, value: float, labels: Optional[Dict] = None):
        """Set a gauge metric value."""
        with self._lock:
            self._child(metric_name, labels).set(value)

    def record_histogram(self, metric_name: str, value: float, labels: Optional[Dict] = None):
        """Record a histogram observation."""
        with self._lock:
            self._child(metric_name, labels).observe(value)

    # =========================================
    # CONVENIENCE METHODS
    # =========================================

    def record_page(self, table_name: str):
        self.record_counter("bigquery_pages_fetched", 1, {"table_name": table_name})

    def record_emitted(self, table_name: str, mode: str, count: int = 1):
        self.record_counter("bigquery_records_emitted", count, {"table_name": table_name, "mode": mode})

    def record_cycle(self, table_count: int, duration_seconds: float):
        """Record metrics for a finished sync cycle."""
        self.record_counter("bigquery_sync_cycles")
        self.record_gauge("bigquery_tables_discovered", table_count)
        self.record_histogram("bigquery_cycle_duration_seconds", duration_seconds)

    def record_flush(self, table_name: str):
        self.record_counter("cdc_batches_flushed", 1, {"table_name": table_name})

    # =========================================
    # EXPORT METHODS
    # =========================================

    def get_sample_value(self, sample_name: str, labels: Optional[Dict] = None) -> Optional[float]:
        """Current value of one exposed sample, e.g. ``bigquery_sync_cycles_total``."""
        return self._registry.get_sample_value(sample_name, labels or {})

    def get_prometheus_metrics(self) -> str:
        """Get metrics in Prometheus exposition format."""
        return generate_latest(self._registry).decode('utf-8')

    def serve(self, port: int, addr: str = "0.0.0.0"):
        """Expose the registry over HTTP."""
        start_http_server(port, addr=addr, registry=self._registry)
        logger.info(f"Serving metrics on {addr}:{port}")
