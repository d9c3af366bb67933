"""
Table Reader
============

Reads one table to its current end, one page at a time, and emits a
ChangeRecord per row.

Per row the reader checks for cancellation, computes the next cursor and
record, puts the record on the output channel (blocking while the channel
is full) and only then stores the cursor. A slow consumer therefore holds
back cursor progress as well as emission.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from observability.logging.structured_logger import log_context

from .channel import OutputChannel
from .cursor_store import CursorStore
from .errors import QueryError, SourceStopped, TableNotFoundError
from .records import (
    TIMESTAMP_FIELD_TYPE,
    ChangeRecord,
    Cursor,
    SyncMode,
    TableDescriptor,
    format_timestamp,
)
from .row_source import PAGE_SIZE, RowPage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReaderInput:
    """Everything one reader task needs, fixed when the task is spawned."""

    table: TableDescriptor
    cursor: Optional[Cursor]
    cycle: int = 0

    @property
    def mode(self) -> SyncMode:
        return SyncMode.for_cursor(self.cursor)


class TableReader:
    """
    Drives the read loop of a single table for one cycle.
    """

    def __init__(
        self,
        connector,
        store: CursorStore,
        channel: OutputChannel,
        cancel: threading.Event,
        page_size: int = PAGE_SIZE,
        metrics=None,
    ):
        self.connector = connector
        self.store = store
        self.channel = channel
        self.cancel = cancel
        self.page_size = page_size
        self.metrics = metrics

    def run(self, reader_input: ReaderInput) -> int:
        """
        Read ``reader_input.table`` until a short page.

        Returns:
            Number of records emitted. A missing table or a teardown ends
            the loop early without an error.

        Raises:
            QueryError: on any warehouse failure other than not found
        """
        table = reader_input.table
        with log_context(table=table.table_id, cycle=reader_input.cycle):
            logger.info(f"Reading {table.table_id} in {reader_input.mode.value} mode")
            try:
                emitted = self._read(reader_input)
            except TableNotFoundError as e:
                logger.warning(f"Table {table.table_id} not found, skipping this cycle: {e}")
                return 0
            except SourceStopped:
                logger.debug(f"Query on {table.table_id} cancelled by teardown")
                return 0
            except QueryError as e:
                if e.table is not None:
                    raise
                raise QueryError(
                    str(e),
                    table=table.table_id,
                    details={"cycle": reader_input.cycle, "mode": reader_input.mode.value},
                ) from e
            logger.info(f"Done reading {table.table_id}: {emitted} record(s)")
            return emitted

    def _read(self, reader_input: ReaderInput) -> int:
        table = reader_input.table
        mode = reader_input.mode
        cursor = reader_input.cursor
        emitted = 0

        while True:
            if self.cancel.is_set():
                return emitted

            page_start = cursor
            page = RowPage(self.connector, table, cursor, self.page_size, cancel=self.cancel)
            if self.metrics:
                self.metrics.record_page(table.table_id)

            for row in page:
                if self.cancel.is_set():
                    logger.debug("Teardown in progress, leaving read loop")
                    return emitted

                cursor, record = self._build_record(table, mode, cursor, page.schema, row)
                if not self.channel.put(record, cancel=self.cancel):
                    return emitted
                if record.position:
                    self.store.set(table.table_id, cursor)

                emitted += 1
                if self.metrics:
                    self.metrics.record_emitted(table.table_id, mode.value)

            if page.is_last_page:
                logger.debug(f"Short page ({page.count} rows), end of table for this cycle")
                return emitted
            if cursor == page_start:
                # the next query would return this same page again
                logger.warning(
                    f"Full page without cursor progress on {table.increment_column}, "
                    f"stopping {table.table_id} for this cycle"
                )
                return emitted

    def _build_record(
        self,
        table: TableDescriptor,
        mode: SyncMode,
        cursor: Optional[Cursor],
        schema: Sequence[Tuple[str, str]],
        row: Sequence[Any],
    ) -> Tuple[Cursor, ChangeRecord]:
        """Turn one warehouse row into the next cursor and its record."""
        payload: Dict[str, Any] = {}
        key: Optional[bytes] = None
        next_cursor: Optional[Cursor] = None

        for (name, field_type), value in zip(schema, row):
            if field_type == TIMESTAMP_FIELD_TYPE:
                value = format_timestamp(value)
            payload[name] = value

            if table.increment_column and name == table.increment_column and value is not None:
                next_cursor = Cursor.from_value(value, field_type)
            if table.primary_key_column and name == table.primary_key_column:
                key = str(value).encode("utf-8")

        if not table.increment_column:
            next_cursor = (cursor or Cursor.counter(0)).advance()
        elif next_cursor is None:
            # increment column missing or NULL in this row, keep the last position
            next_cursor = cursor

        position = b""
        if next_cursor is not None:
            try:
                position = self.store.encode_position({table.table_id: next_cursor})
            except (TypeError, ValueError) as e:
                logger.error(f"Error marshalling position for {table.table_id}: {e}")

        record = ChangeRecord(
            payload=payload,
            position=position,
            key=key,
            metadata={"bigquery.table": table.table_id, "bigquery.mode": mode.value},
        )
        return next_cursor, record
