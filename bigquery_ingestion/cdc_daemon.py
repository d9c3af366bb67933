#!/usr/bin/env python3
"""
CDC Daemon - BigQuery to MinIO
==============================

Runs the BigQuery source as a long-lived process and lands the captured
rows in the MinIO raw bucket.

Features:
- Snapshot of every table, then incremental polling
- Batched writes to MinIO (csv or parquet)
- Checkpoint persistence after every flush for recovery
- Graceful shutdown handling

Usage:
    python -m bigquery_ingestion.cdc_daemon --config path/to/configs
"""

import argparse
import base64
import json
import logging
import os
import signal
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from observability.logging.structured_logger import configure_logging
from observability.metrics.collector import MetricsCollector

from .connectors.minio_connector import MinIOConnector
from .errors import BackoffRetry, SourceError, SourceStopped
from .records import ChangeRecord, SyncMode
from .source import BigQuerySource

logger = logging.getLogger(__name__)


class CDCDaemon:
    """
    Host process for the BigQuery source: reads records, batches them per
    table and writes the batches to MinIO, persisting the position after
    every successful write.
    """

    def __init__(
        self,
        config_path: str = None,
        source: Optional[BigQuerySource] = None,
        target: Optional[MinIOConnector] = None,
    ):
        self.config_path = config_path or str(Path(__file__).parent / "configs")
        self.task_settings = self._load_config("task_settings.json")
        settings = self.task_settings.get("task_settings", {})

        # State
        self.running = False
        self.checkpoint_file = settings.get("checkpoint_file", "checkpoints/bigquery_checkpoint.json")
        self.checkpoint = self._load_checkpoint()

        # Batching
        self.batch_size = settings.get("batch_size", 100)
        self.flush_interval = settings.get("flush_interval", 10)
        self.idle_sleep = settings.get("idle_sleep", 1.0)
        self.file_format = settings.get("file_format", "csv")
        self.prefix = self.task_settings.get("target", {}).get("prefix", "bigquery")
        self.last_flush = time.time()
        self._batches: Dict[str, List[ChangeRecord]] = {}
        self._pending_position: Optional[bytes] = None

        self.metrics = MetricsCollector()
        self.source = source or BigQuerySource(metrics=self.metrics)
        self.target = target

        logger.info("CDC Daemon initialized")

    def _load_config(self, filename: str) -> Dict:
        """Load configuration file."""
        path = os.path.join(self.config_path, filename)
        with open(path, 'r') as f:
            return json.load(f)

    def _load_checkpoint(self) -> Dict:
        """Load checkpoint from file."""
        if os.path.exists(self.checkpoint_file):
            with open(self.checkpoint_file, 'r') as f:
                return json.load(f)
        return {"position": None, "last_timestamp": None, "records_written": 0}

    def _save_checkpoint(self, position: bytes, records_written: int):
        """Save checkpoint to file, atomically."""
        self.checkpoint["position"] = base64.b64encode(position).decode("ascii")
        self.checkpoint["last_timestamp"] = datetime.now().isoformat()
        self.checkpoint["records_written"] = self.checkpoint.get("records_written", 0) + records_written

        checkpoint_dir = os.path.dirname(self.checkpoint_file)
        if checkpoint_dir:
            os.makedirs(checkpoint_dir, exist_ok=True)
        tmp_file = f"{self.checkpoint_file}.tmp"
        with open(tmp_file, 'w') as f:
            json.dump(self.checkpoint, f, indent=2)
        os.replace(tmp_file, self.checkpoint_file)

    def resume_position(self) -> Optional[bytes]:
        encoded = self.checkpoint.get("position")
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except ValueError:
            logger.warning("Checkpoint position is not valid base64, starting fresh")
            return None

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully."""
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False

    def connect(self):
        """Connect to MinIO."""
        if self.target is None:
            self.target = MinIOConnector(self.task_settings["target"]["connection"], prefix=self.prefix)
        self.target.connect()
        logger.info("Connected to MinIO")

    def _to_dataframe(self, records: List[ChangeRecord]) -> pd.DataFrame:
        """Rows plus audit columns."""
        extraction_time = datetime.now().isoformat()
        rows = []
        for record in records:
            op = "I" if record.metadata.get("bigquery.mode") == SyncMode.SNAPSHOT.value else "U"
            rows.append({
                **record.payload,
                "extraction_time": extraction_time,
                "created_at_source": record.created_at.isoformat(),
                "record_key": record.key.decode("utf-8") if record.key is not None else None,
                "op": op,
            })
        return pd.DataFrame(rows)

    def flush(self):
        """
        Write every pending batch, then persist and ack the position of the
        last record read.

        All tables are flushed together: the position of a record also
        covers rows of other tables read before it.
        """
        pending = {table: records for table, records in self._batches.items() if records}
        if pending:
            batch_id = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            for table, records in pending.items():
                logger.info(f"  Writing {len(records)} {table} records, batch {batch_id}")
                self.target.write_batch(
                    table,
                    self._to_dataframe(records),
                    batch_id,
                    file_format=self.file_format
                )
                self.metrics.record_flush(table)

        written = sum(len(records) for records in pending.values())
        if self._pending_position is not None:
            self._save_checkpoint(self._pending_position, written)
            self.source.ack(self._pending_position)
            self._pending_position = None

        self._batches = {}
        self.last_flush = time.time()
        if written:
            logger.info(f"  Flushed {written} records")

    def handle(self, record: ChangeRecord):
        """Buffer one record, flushing when the batch is full."""
        self._batches.setdefault(record.table or "unknown", []).append(record)
        if record.position:
            self._pending_position = record.position

        if sum(len(records) for records in self._batches.values()) >= self.batch_size:
            self.flush()

    def run(self) -> int:
        """
        Run until a signal or a fatal source error.

        Returns:
            Process exit code
        """
        logger.info("=" * 60)
        logger.info("CDC DAEMON - BIGQUERY POLLING")
        logger.info("=" * 60)

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)

        metrics_port = self.task_settings.get("task_settings", {}).get("metrics_port")
        if metrics_port:
            self.metrics.serve(int(metrics_port))

        self.connect()
        self.source.configure(self.task_settings["source"])
        self.source.open(self.resume_position())
        self.running = True
        exit_code = 0

        try:
            while self.running:
                try:
                    record = self.source.read()
                except BackoffRetry:
                    if time.time() - self.last_flush >= self.flush_interval:
                        self.flush()
                    time.sleep(self.idle_sleep)
                    continue
                except SourceStopped:
                    break
                except SourceError as e:
                    logger.error(f"Source failed: {e}", extra={"error": e.to_dict()})
                    exit_code = 1
                    break

                self.handle(record)
                if time.time() - self.last_flush >= self.flush_interval:
                    self.flush()

            # Final flush
            self.flush()
        finally:
            self.source.teardown()

        logger.info("CDC Daemon stopped")
        return exit_code


def main():
    parser = argparse.ArgumentParser(description="CDC Daemon - BigQuery incremental capture")
    parser.add_argument("--config", help="Path to config directory")
    args = parser.parse_args()

    daemon = CDCDaemon(config_path=args.config)
    log_settings = daemon.task_settings.get("task_settings", {}).get("logging", {})
    configure_logging(
        level=log_settings.get("level", "INFO"),
        json_format=log_settings.get("json", True),
        log_file=log_settings.get("log_path") if log_settings.get("log_to_file") else None,
    )
    sys.exit(daemon.run())


if __name__ == "__main__":
    main()
