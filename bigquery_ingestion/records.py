"""
Data Model
==========

Table descriptors, cursors and the change records handed to the host.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

NUMERIC_FIELD_TYPES = frozenset({
    "INTEGER", "INT64", "FLOAT", "FLOAT64", "NUMERIC", "BIGNUMERIC",
})
TIMESTAMP_FIELD_TYPE = "TIMESTAMP"


class SyncMode(Enum):
    """Per-table read mode, derived at the start of every cycle."""

    SNAPSHOT = "snapshot"
    INCREMENTAL = "incremental"

    @classmethod
    def for_cursor(cls, cursor: Optional["Cursor"]) -> "SyncMode":
        return cls.SNAPSHOT if cursor is None else cls.INCREMENTAL


@dataclass(frozen=True)
class TableDescriptor:
    """One source table and the columns that drive its ordering and keys."""

    table_id: str
    increment_column: Optional[str] = None
    primary_key_column: Optional[str] = None
    order_by: Optional[str] = None


@dataclass(frozen=True)
class Cursor:
    """
    Read position of one table.

    A counter cursor carries ``offset`` (rows consumed in scan order).
    A value cursor carries the last seen increment column ``value`` and the
    BigQuery ``field_type`` it came from, which decides literal quoting.
    """

    offset: Optional[int] = None
    value: Optional[str] = None
    field_type: Optional[str] = None

    @classmethod
    def counter(cls, offset: int) -> "Cursor":
        return cls(offset=offset)

    @classmethod
    def from_value(cls, value: Any, field_type: Optional[str]) -> "Cursor":
        return cls(value=str(value), field_type=field_type)

    @property
    def is_counter(self) -> bool:
        return self.offset is not None

    def advance(self) -> "Cursor":
        """Counter cursor moved past one more row."""
        return Cursor.counter((self.offset or 0) + 1)

    def to_sql_literal(self) -> str:
        """Render the cursor value for a ``WHERE col > <literal>`` predicate."""
        if self.is_counter:
            return str(self.offset)
        if self.field_type and self.field_type.upper() in NUMERIC_FIELD_TYPES:
            return self.value
        if self.field_type is None and len(self.value) > 1 and self.value[0] == self.value[-1] == "'":
            # legacy positions stored the literal already quoted
            return self.value
        escaped = self.value.replace("\\", "\\\\").replace("'", "\\'")
        return f"'{escaped}'"

    def to_json(self) -> Any:
        if self.is_counter:
            return self.offset
        return {"value": self.value, "type": self.field_type}

    @classmethod
    def from_json(cls, data: Any) -> "Cursor":
        """
        Inverse of ``to_json``.

        Raises:
            ValueError: if ``data`` is not a cursor encoding
        """
        if isinstance(data, bool):
            raise ValueError(f"not a cursor: {data!r}")
        if isinstance(data, int):
            return cls.counter(data)
        if isinstance(data, dict) and isinstance(data.get("value"), str):
            field_type = data.get("type")
            if field_type is not None and not isinstance(field_type, str):
                raise ValueError(f"not a cursor type: {field_type!r}")
            return cls(value=data["value"], field_type=field_type)
        raise ValueError(f"not a cursor: {data!r}")


@dataclass(frozen=True)
class ChangeRecord:
    """One row read from a table, ready for the host."""

    payload: Dict[str, Any]
    position: bytes
    key: Optional[bytes] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def table(self) -> Optional[str]:
        return self.metadata.get("bigquery.table")


def format_timestamp(value: Any) -> Any:
    """
    Normalise a TIMESTAMP value to ``YYYY-MM-DD HH:MM:SS[.ffffff] UTC``.

    Trailing zeros of the fractional second are dropped. Values that are not
    datetimes are returned unchanged.
    """
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    text = value.strftime("%Y-%m-%d %H:%M:%S")
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    return f"{text} UTC"
