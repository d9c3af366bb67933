"""
Paginated Row Source
====================

Builds the page query for a table and exposes one page of rows.

Query rules:
- increment column, first pass:  ORDER BY col LIMIT n
- increment column, with cursor: WHERE col > cursor ORDER BY col LIMIT n
- no increment column:           [ORDER BY explicit col] LIMIT n OFFSET cursor

Without an increment column or explicit ORDER BY the scan order is whatever
the warehouse returns, so rows written between pages can be skipped or read
twice.
"""

import logging
import threading
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from .records import Cursor, TableDescriptor

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


def build_page_query(
    table_ref: str,
    table: TableDescriptor,
    cursor: Optional[Cursor],
    page_size: int = PAGE_SIZE,
) -> str:
    """
    Build the SELECT for the next page of ``table``.

    Args:
        table_ref: Fully qualified table reference
        table: Table descriptor
        cursor: Current cursor, None on the first snapshot pass
        page_size: Rows per page

    Returns:
        SQL string
    """
    if table.increment_column:
        column = table.increment_column
        if cursor is None:
            return f"SELECT * FROM {table_ref} ORDER BY {column} LIMIT {page_size}"
        return (
            f"SELECT * FROM {table_ref} WHERE {column} > {cursor.to_sql_literal()} "
            f"ORDER BY {column} LIMIT {page_size}"
        )

    offset = cursor.offset if cursor is not None and cursor.is_counter else 0
    order_by = f" ORDER BY {table.order_by}" if table.order_by else ""
    return f"SELECT * FROM {table_ref}{order_by} LIMIT {page_size} OFFSET {offset}"


class RowPage:
    """
    One page of rows. Creating it runs the query; iterating it walks the
    result forward once.
    """

    def __init__(
        self,
        connector,
        table: TableDescriptor,
        cursor: Optional[Cursor],
        page_size: int = PAGE_SIZE,
        cancel: Optional[threading.Event] = None,
    ):
        self.table = table
        self.page_size = page_size
        self.query = build_page_query(connector.table_ref(table.table_id), table, cursor, page_size)
        self.count = 0

        result = connector.run_query(self.query, page_size=page_size, cancel=cancel)
        self.schema: List[Tuple[str, str]] = result.schema
        self._rows = iter(result.rows)
        self._consumed = False

    def __iter__(self) -> Iterator[Sequence[Any]]:
        if self._consumed:
            raise RuntimeError("a RowPage can only be iterated once")
        self._consumed = True
        for row in self._rows:
            self.count += 1
            yield row

    @property
    def is_last_page(self) -> bool:
        """A short page (including an empty one) ends the table for this cycle."""
        return self.count < self.page_size
