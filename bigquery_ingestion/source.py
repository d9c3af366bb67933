"""
BigQuery Source
===============

Host-facing lifecycle: configure -> open -> read ... -> ack -> teardown.

``read`` never blocks: it returns the next record, raises BackoffRetry when
nothing is ready, or raises the run's terminal error once every task has
stopped.
"""

import logging
from queue import Empty
from typing import Callable, Dict, Optional

from observability.metrics.collector import MetricsCollector

from . import errors
from .channel import DEFAULT_CAPACITY, OutputChannel
from .config import SourceConfig
from .connectors.bigquery_connector import BigQueryConnector
from .cursor_store import CursorStore
from .records import ChangeRecord
from .row_source import PAGE_SIZE
from .scheduler import SyncScheduler
from .supervisor import Supervisor
from .table_reader import TableReader

logger = logging.getLogger(__name__)

TEARDOWN_TIMEOUT = 30.0


class BigQuerySource:
    """
    Incremental BigQuery source.

    Usage:
        source = BigQuerySource()
        source.configure({"projectID": "p", "datasetID": "d", "tableIDs": "orders"})
        source.open(last_position)
        while True:
            try:
                record = source.read()
            except BackoffRetry:
                time.sleep(1)
                continue
            ...
        source.teardown()
    """

    def __init__(
        self,
        connector_factory: Callable[[SourceConfig], object] = BigQueryConnector,
        metrics: Optional[MetricsCollector] = None,
        page_size: int = PAGE_SIZE,
        channel_capacity: int = DEFAULT_CAPACITY,
    ):
        self.connector_factory = connector_factory
        self.metrics = metrics or MetricsCollector()
        self.page_size = page_size
        self.channel_capacity = channel_capacity

        self.config: Optional[SourceConfig] = None
        self.connector = None
        self.store: Optional[CursorStore] = None
        self.channel: Optional[OutputChannel] = None
        self.supervisor: Optional[Supervisor] = None
        self.scheduler: Optional[SyncScheduler] = None
        self._torn_down = False

    def configure(self, cfg: Dict[str, str]):
        """
        Validate the host configuration.

        Raises:
            ConfigurationError: on invalid configuration
        """
        logger.debug("Configuring BigQuery source")
        try:
            self.config = SourceConfig.from_dict(cfg)
        except errors.ConfigurationError as e:
            logger.error(f"Invalid config provided: {e}")
            raise

    def open(self, position: Optional[bytes] = None):
        """
        Restore positions, connect and start the sync loop.

        Args:
            position: Resume position from a previous run; empty or
                unreadable means start fresh

        Raises:
            ConnectionError: if the BigQuery client cannot be created
        """
        if self.config is None:
            raise errors.ConfigurationError("open called before configure")

        self.store = CursorStore.from_position(position, single_table=self.config.single_table)
        self.channel = OutputChannel(capacity=self.channel_capacity)
        self.supervisor = Supervisor()

        try:
            self.connector = self.connector_factory(self.config)
            self.connector.connect()
        except Exception as e:
            logger.error(f"Error while creating BigQuery client: {e}")
            client_error = errors.ConnectionError(f"error while creating bigquery client: {e}")
            self.supervisor.kill(client_error)
            raise client_error from e

        reader = TableReader(
            self.connector,
            self.store,
            self.channel,
            cancel=self.supervisor.dying,
            page_size=self.page_size,
            metrics=self.metrics,
        )
        self.scheduler = SyncScheduler(
            self.config, self.connector, self.store, reader, self.supervisor, metrics=self.metrics
        )
        self.supervisor.go(self.scheduler.run, name="scheduler")
        logger.info(
            f"Source opened for {self.config.project_id}.{self.config.dataset_id}, "
            f"polling every {self.config.polling_time}"
        )

    def read(self) -> ChangeRecord:
        """
        Next record, without blocking.

        Raises:
            BackoffRetry: if no record is ready yet
            SourceError: the terminal error once the run has stopped
        """
        if self.supervisor is None or self.channel is None:
            raise errors.SourceStopped("source is not open")

        if self.supervisor.dead.is_set():
            err = self.supervisor.err
            raise err if err is not None else errors.SourceStopped()

        try:
            return self.channel.get_nowait()
        except Empty:
            raise errors.BackoffRetry() from None

    def ack(self, position: bytes):
        logger.debug(f"Got ack for position {position!r}")

    def teardown(self):
        """Stop every task, then close the channel and the client."""
        if self._torn_down:
            return
        self._torn_down = True

        if self.supervisor is not None:
            self.supervisor.stop()
            if not self.supervisor.dead.wait(TEARDOWN_TIMEOUT):
                logger.warning(f"Readers still running after {TEARDOWN_TIMEOUT}s, closing anyway")
        if self.channel is not None:
            self.channel.close()
        if self.connector is not None:
            try:
                self.connector.disconnect()
            except Exception as e:
                logger.error(f"Got error while closing BigQuery client: {e}")
                raise
        logger.info("Source torn down")
