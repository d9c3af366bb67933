"""
Source Configuration
====================

Parses the string map handed over by the host into a validated SourceConfig.

Keys:
    serviceAccount          Path to a service account JSON file (optional)
    projectID               Google project ID
    datasetID               BigQuery dataset ID
    tableIDs                Comma separated table IDs, or "*" to discover all tables
    incrementingColumnName  Column used for ordering and as the cursor value, either one
                            name for every table or "table:column,..." (optional)
    primaryKeyColName       Column whose value becomes the record key (optional)
    orderBy                 "table:column,..." explicit ORDER BY per table (optional)
    pollingTime             Polling interval, e.g. "30s", "1m30s" (optional, default 5m)
    datasetLocation         Location/region for query jobs (optional)
"""

import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError

CONFIG_SERVICE_ACCOUNT = "serviceAccount"
CONFIG_PROJECT_ID = "projectID"
CONFIG_DATASET_ID = "datasetID"
CONFIG_TABLE_IDS = "tableIDs"
CONFIG_INCREMENT_COLUMN = "incrementingColumnName"
CONFIG_PRIMARY_KEY_COLUMN = "primaryKeyColName"
CONFIG_ORDER_BY = "orderBy"
CONFIG_POLLING_TIME = "pollingTime"
CONFIG_LOCATION = "datasetLocation"

DISCOVER_ALL_TABLES = "*"
DEFAULT_POLLING_TIME = timedelta(minutes=5)

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: str) -> timedelta:
    """
    Parse a Go-style duration string ("300ms", "1.5h", "2h45m").

    Args:
        value: Duration string

    Returns:
        timedelta

    Raises:
        ValueError: if the string is not a valid duration
    """
    text = value.strip()
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    seconds = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration {value!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        raise ValueError(f"invalid duration {value!r}")

    return timedelta(seconds=sign * seconds)


def _entries(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _table_column(item: str, key: str) -> Tuple[str, str]:
    table, sep, column = item.partition(":")
    if not sep or not table.strip() or not column.strip():
        raise ConfigurationError(f"invalid {key} entry {item!r}, expected table:column")
    return table.strip(), column.strip()


def parse_order_by(value: str) -> Dict[str, str]:
    """Parse "table:column,table2:column2" into a mapping."""
    return dict(_table_column(item, CONFIG_ORDER_BY) for item in _entries(value))


def parse_increment_columns(value: str) -> Tuple[Optional[str], Dict[str, str]]:
    """
    Parse the increment column setting.

    A bare column name applies to every table without an entry of its own;
    "table:column" entries set the column of a single table.

        "updated_at"                    every table pages by updated_at
        "users:updated_at"              only users does, the rest use OFFSET
        "id,users:updated_at"           users by updated_at, the rest by id

    Returns:
        (default column or None, per-table mapping)
    """
    default = None
    per_table = {}
    for item in _entries(value):
        if ":" not in item:
            if default is not None:
                raise ConfigurationError(
                    f"{CONFIG_INCREMENT_COLUMN} has more than one default column: {default!r}, {item!r}"
                )
            default = item
            continue
        table, column = _table_column(item, CONFIG_INCREMENT_COLUMN)
        per_table[table] = column
    return default, per_table


@dataclass
class SourceConfig:
    """Validated source configuration."""

    project_id: str
    dataset_id: str
    table_ids: List[str] = field(default_factory=list)
    discover_tables: bool = False
    service_account: Optional[str] = None
    increment_column: Optional[str] = None
    increment_columns: Dict[str, str] = field(default_factory=dict)
    primary_key_column: Optional[str] = None
    order_by: Dict[str, str] = field(default_factory=dict)
    polling_time: timedelta = DEFAULT_POLLING_TIME
    location: Optional[str] = None

    @classmethod
    def from_dict(cls, cfg: Dict[str, str]) -> "SourceConfig":
        """
        Build a SourceConfig from the host's configuration map.

        Raises:
            ConfigurationError: on missing required keys or invalid values
        """
        project_id = (cfg.get(CONFIG_PROJECT_ID) or "").strip()
        dataset_id = (cfg.get(CONFIG_DATASET_ID) or "").strip()
        if not project_id:
            raise ConfigurationError(f"{CONFIG_PROJECT_ID} is required")
        if not dataset_id:
            raise ConfigurationError(f"{CONFIG_DATASET_ID} is required")

        raw_tables = (cfg.get(CONFIG_TABLE_IDS) or "").strip()
        if not raw_tables:
            raise ConfigurationError(
                f"{CONFIG_TABLE_IDS} is required, use '{DISCOVER_ALL_TABLES}' to sync every table"
            )
        discover_tables = raw_tables == DISCOVER_ALL_TABLES
        table_ids = [] if discover_tables else [
            t.strip() for t in raw_tables.split(",") if t.strip()
        ]

        polling_time = DEFAULT_POLLING_TIME
        raw_polling = (cfg.get(CONFIG_POLLING_TIME) or "").strip()
        if raw_polling:
            try:
                polling_time = parse_duration(raw_polling)
            except ValueError:
                raise ConfigurationError("invalid polling time duration provided")
            if polling_time <= timedelta(0):
                raise ConfigurationError("polling time must be positive")

        increment_column, increment_columns = parse_increment_columns(
            cfg.get(CONFIG_INCREMENT_COLUMN) or ""
        )

        return cls(
            project_id=project_id,
            dataset_id=dataset_id,
            table_ids=table_ids,
            discover_tables=discover_tables,
            service_account=(cfg.get(CONFIG_SERVICE_ACCOUNT) or "").strip() or None,
            increment_column=increment_column,
            increment_columns=increment_columns,
            primary_key_column=(cfg.get(CONFIG_PRIMARY_KEY_COLUMN) or "").strip() or None,
            order_by=parse_order_by(cfg.get(CONFIG_ORDER_BY) or ""),
            polling_time=polling_time,
            location=(cfg.get(CONFIG_LOCATION) or "").strip() or None,
        )

    def increment_column_for(self, table_id: str) -> Optional[str]:
        return self.increment_columns.get(table_id, self.increment_column)

    @property
    def single_table(self) -> Optional[str]:
        """The only configured table, if exactly one is listed explicitly."""
        if not self.discover_tables and len(self.table_ids) == 1:
            return self.table_ids[0]
        return None
