"""
Sync Scheduler
==============

Discovers the tables, runs one reader per table per cycle and re-runs the
cycle on a fixed interval.

Only one cycle is in flight at a time: the next tick is handled after every
reader of the current cohort has returned.
"""

import logging
import time
from typing import List, Optional

from .config import SourceConfig
from .cursor_store import CursorStore
from .records import SyncMode, TableDescriptor
from .supervisor import Supervisor, WaitGroup
from .table_reader import ReaderInput, TableReader

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Owns the polling loop of the source.
    """

    def __init__(
        self,
        config: SourceConfig,
        connector,
        store: CursorStore,
        reader: TableReader,
        supervisor: Supervisor,
        metrics=None,
    ):
        self.config = config
        self.connector = connector
        self.store = store
        self.reader = reader
        self.supervisor = supervisor
        self.metrics = metrics
        self.cycles = 0

    def discover_tables(self) -> List[TableDescriptor]:
        """
        Current table set: the configured list, or every table of the dataset.

        Raises:
            QueryError: if listing the dataset fails
        """
        if self.config.discover_tables:
            table_ids = self.connector.list_tables()
            logger.info(f"Discovered {len(table_ids)} table(s) in {self.config.dataset_id}")
        else:
            table_ids = list(self.config.table_ids)

        return [
            TableDescriptor(
                table_id=table_id,
                increment_column=self.config.increment_column_for(table_id),
                primary_key_column=self.config.primary_key_column,
                order_by=self.config.order_by.get(table_id),
            )
            for table_id in table_ids
        ]

    def run_cycle(self) -> int:
        """
        Read every table once, concurrently, and wait for all of them.

        Returns:
            Number of tables in the cycle
        """
        self.cycles += 1
        cycle = self.cycles
        started = time.monotonic()
        tables = self.discover_tables()

        wg = WaitGroup()
        for table in tables:
            reader_input = ReaderInput(table=table, cursor=self.store.get(table.table_id), cycle=cycle)
            if reader_input.mode is SyncMode.SNAPSHOT:
                logger.info(f"Cycle {cycle}: {table.table_id} has no position yet, taking a snapshot")
            wg.add()
            try:
                self.supervisor.go(
                    self._read_table, reader_input, wg, name=f"reader-{table.table_id}-{cycle}"
                )
            except RuntimeError:
                wg.done()
                raise

        wg.wait()
        duration = time.monotonic() - started
        logger.info(f"Cycle {cycle} finished: {len(tables)} table(s) in {duration:.2f}s")
        if self.metrics:
            self.metrics.record_cycle(len(tables), duration)
        return len(tables)

    def _read_table(self, reader_input: ReaderInput, wg: WaitGroup):
        try:
            self.reader.run(reader_input)
        finally:
            wg.done()

    def run(self, interval: Optional[float] = None):
        """
        First cycle right away, then one cycle per tick until the
        supervisor is dying. Ticks missed while a cycle runs are dropped.
        """
        interval = interval if interval is not None else self.config.polling_time.total_seconds()
        dying = self.supervisor.dying

        self.run_cycle()
        next_tick = time.monotonic() + interval
        while True:
            if dying.wait(max(0.0, next_tick - time.monotonic())):
                logger.info("Scheduler stopping")
                return
            logger.debug("Ticker fired, starting a new cycle")
            self.run_cycle()

            now = time.monotonic()
            next_tick += interval
            while next_tick <= now:
                next_tick += interval
