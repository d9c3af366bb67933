"""
Cursor Store
============

Per-table read positions shared by the table readers and the scheduler.

The store is also the source of the position blob: a JSON object mapping
table IDs to cursors. The same encoding is used for the resume position
handed to ``open`` and for the position token of every emitted record.
"""

import json
import logging
import threading
from typing import Dict, Optional

from .records import Cursor

logger = logging.getLogger(__name__)


class CursorStore:
    """
    Thread-safe table -> cursor map.

    All access goes through ``get``/``set``/``snapshot``. The lock only
    guards the map itself and is never held across I/O.
    """

    def __init__(self, cursors: Optional[Dict[str, Cursor]] = None):
        self._lock = threading.Lock()
        self._cursors: Dict[str, Cursor] = dict(cursors or {})

    def get(self, table_id: str) -> Optional[Cursor]:
        with self._lock:
            return self._cursors.get(table_id)

    def set(self, table_id: str, cursor: Cursor):
        with self._lock:
            self._cursors[table_id] = cursor

    def snapshot(self) -> Dict[str, Cursor]:
        """Copy of the current map."""
        with self._lock:
            return dict(self._cursors)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cursors)

    def encode_position(self, overrides: Optional[Dict[str, Cursor]] = None) -> bytes:
        """
        Serialize the store as a position blob.

        Args:
            overrides: Cursors to use instead of the stored ones (the reader
                passes the cursor of the row it is about to emit)

        Returns:
            UTF-8 JSON bytes

        Raises:
            TypeError, ValueError: if a cursor cannot be serialized
        """
        cursors = self.snapshot()
        if overrides:
            cursors.update(overrides)
        data = {table_id: cursor.to_json() for table_id, cursor in sorted(cursors.items())}
        return json.dumps(data, allow_nan=False).encode("utf-8")

    @classmethod
    def from_position(cls, position: Optional[bytes], single_table: Optional[str] = None) -> "CursorStore":
        """
        Rebuild a store from a position blob.

        An empty or unreadable blob starts fresh (every table in snapshot
        mode). A bare scalar cursor is only understood when exactly one
        table is configured.

        Args:
            position: Blob previously produced by ``encode_position``
            single_table: The only configured table, if any

        Returns:
            CursorStore
        """
        if not position:
            logger.info("No position provided, starting with a fresh snapshot")
            return cls()

        try:
            data = json.loads(position)
        except (ValueError, UnicodeDecodeError):
            logger.info("Could not get position, starting with a fresh snapshot")
            return cls()

        if isinstance(data, dict):
            cursors = {}
            for table_id, raw in data.items():
                try:
                    cursors[table_id] = Cursor.from_json(raw)
                except ValueError:
                    logger.warning(f"Ignoring unreadable cursor for table {table_id}: {raw!r}")
            logger.info(f"Restored cursors for {len(cursors)} table(s)")
            return cls(cursors)

        if single_table is not None and not isinstance(data, bool):
            if isinstance(data, int):
                return cls({single_table: Cursor.counter(data)})
            if isinstance(data, str) and data:
                if data.isdigit():
                    return cls({single_table: Cursor.counter(int(data))})
                return cls({single_table: Cursor(value=data)})

        logger.info(f"Position {data!r} does not match the configured tables, starting fresh")
        return cls()
