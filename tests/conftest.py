"""Pytest configuration and fixtures.

The fake warehouse keeps tables in memory and answers the page queries the
source generates, so the read loop can be exercised without BigQuery.
"""

import re
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from bigquery_ingestion.config import SourceConfig
from bigquery_ingestion.connectors.bigquery_connector import QueryResult
from bigquery_ingestion.errors import QueryError, SourceStopped, TableNotFoundError
from bigquery_ingestion.records import NUMERIC_FIELD_TYPES, format_timestamp

PAGE_QUERY = re.compile(
    r"^SELECT \* FROM `(?P<ref>[^`]+)`"
    r"(?: WHERE (?P<where_col>\w+) > (?P<literal>.+?))?"
    r"(?: ORDER BY (?P<order_col>\w+))?"
    r" LIMIT (?P<limit>\d+)"
    r"(?: OFFSET (?P<offset>\d+))?$"
)


class FakeTable:
    def __init__(self, schema: List[Tuple[str, str]], rows: List[Sequence[Any]]):
        self.schema = schema
        self.rows = [tuple(r) for r in rows]

    def column(self, name: str) -> Tuple[int, str]:
        for i, (col, field_type) in enumerate(self.schema):
            if col == name:
                return i, field_type
        raise QueryError(f"Unrecognized name: {name}")


def _comparable(value: Any, field_type: str):
    if field_type in NUMERIC_FIELD_TYPES:
        return float(value)
    return str(format_timestamp(value))


def _parse_literal(literal: str, field_type: str):
    if literal.startswith("'"):
        text = literal[1:-1].replace("\\'", "'").replace("\\\\", "\\")
        return float(text) if field_type in NUMERIC_FIELD_TYPES else text
    return float(literal)


class FakeWarehouse:
    """Stands in for BigQueryConnector."""

    def __init__(self, project: str = "proj", dataset: str = "ds"):
        self.project = project
        self.dataset = dataset
        self.tables: Dict[str, FakeTable] = {}
        self.queries: List[str] = []
        self.fail_tables: Dict[str, Exception] = {}
        self.block_tables: Dict[str, threading.Event] = {}
        self.list_error: Optional[Exception] = None
        self.connected = False
        self.disconnect_calls = 0
        self._lock = threading.Lock()

    # connector interface

    def connect(self):
        self.connected = True

    def disconnect(self):
        self.disconnect_calls += 1

    def table_ref(self, table_id: str) -> str:
        return f"`{self.project}.{self.dataset}.{table_id}`"

    def list_tables(self) -> List[str]:
        if self.list_error is not None:
            raise self.list_error
        return sorted(self.tables)

    def run_query(self, query: str, page_size: int, cancel: Optional[threading.Event] = None) -> QueryResult:
        with self._lock:
            self.queries.append(query)

        match = PAGE_QUERY.match(query)
        assert match, f"unexpected query: {query}"
        table_id = match.group("ref").split(".")[-1]

        blocker = self.block_tables.get(table_id)
        if blocker is not None:
            # simulates a long running job that only ends on cancellation
            blocker.set()
            while not (cancel is not None and cancel.wait(0.01)):
                pass
            raise SourceStopped("query cancelled")

        if table_id in self.fail_tables:
            raise self.fail_tables[table_id]
        if table_id not in self.tables:
            raise TableNotFoundError(f"Not found: Table {self.project}:{self.dataset}.{table_id}")

        table = self.tables[table_id]
        rows = list(table.rows)

        if match.group("where_col"):
            idx, field_type = table.column(match.group("where_col"))
            bound = _parse_literal(match.group("literal"), field_type)
            rows = [r for r in rows if _comparable(r[idx], field_type) > bound]
        if match.group("order_col"):
            idx, field_type = table.column(match.group("order_col"))
            rows.sort(key=lambda r: _comparable(r[idx], field_type))

        offset = int(match.group("offset") or 0)
        rows = rows[offset:offset + int(match.group("limit"))]
        return QueryResult(schema=list(table.schema), rows=(r for r in rows))

    # helpers

    def add_table(self, table_id: str, schema: List[Tuple[str, str]], rows: List[Sequence[Any]]):
        self.tables[table_id] = FakeTable(schema, rows)

    def append_rows(self, table_id: str, rows: List[Sequence[Any]]):
        self.tables[table_id].rows.extend(tuple(r) for r in rows)

    def queries_for(self, table_id: str) -> List[str]:
        return [q for q in self.queries if f".{table_id}`" in q]


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)

ORDERS_SCHEMA = [("id", "INTEGER"), ("amount", "FLOAT"), ("status", "STRING")]
USERS_SCHEMA = [("id", "INTEGER"), ("name", "STRING"), ("updated_at", "TIMESTAMP")]


def order_rows(count: int, start: int = 1) -> List[tuple]:
    return [(i, float(i) * 1.5, "new") for i in range(start, start + count)]


def user_rows(count: int, start: int = 1) -> List[tuple]:
    return [
        (i, f"user-{i}", BASE_TIME + timedelta(minutes=i))
        for i in range(start, start + count)
    ]


@pytest.fixture
def warehouse() -> FakeWarehouse:
    return FakeWarehouse()


@pytest.fixture
def make_config():
    def _make(**overrides) -> SourceConfig:
        values = {"project_id": "proj", "dataset_id": "ds", "table_ids": ["orders"]}
        values.update(overrides)
        return SourceConfig(**values)
    return _make


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
