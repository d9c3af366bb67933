"""Tests for the cursor store and the position blob."""

import json
import threading

import pytest

from bigquery_ingestion.cursor_store import CursorStore
from bigquery_ingestion.records import Cursor


class TestCursorStore:
    def test_get_unknown_table(self):
        assert CursorStore().get("orders") is None

    def test_set_and_get(self):
        store = CursorStore()
        store.set("orders", Cursor.counter(5))

        assert store.get("orders") == Cursor.counter(5)
        assert len(store) == 1

    def test_snapshot_is_a_copy(self):
        store = CursorStore({"orders": Cursor.counter(1)})
        snapshot = store.snapshot()
        snapshot["users"] = Cursor.counter(2)

        assert store.get("users") is None

    def test_concurrent_writers(self):
        store = CursorStore()

        def write(table):
            for i in range(500):
                store.set(table, Cursor.counter(i))

        threads = [threading.Thread(target=write, args=(f"t{n}",)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store) == 8
        assert all(store.get(f"t{n}") == Cursor.counter(499) for n in range(8))


class TestPosition:
    def test_encode(self):
        store = CursorStore({
            "users": Cursor.from_value("2024-01-01 00:00:00 UTC", "TIMESTAMP"),
            "orders": Cursor.counter(100),
        })

        data = json.loads(store.encode_position())

        assert data == {
            "orders": 100,
            "users": {"value": "2024-01-01 00:00:00 UTC", "type": "TIMESTAMP"},
        }

    def test_overrides_do_not_touch_store(self):
        store = CursorStore({"orders": Cursor.counter(1), "users": Cursor.counter(9)})

        data = json.loads(store.encode_position({"orders": Cursor.counter(2)}))

        assert data == {"orders": 2, "users": 9}
        assert store.get("orders") == Cursor.counter(1)

    def test_round_trip(self):
        store = CursorStore({
            "orders": Cursor.counter(250),
            "users": Cursor.from_value("O'Brien", "STRING"),
        })

        restored = CursorStore.from_position(store.encode_position())

        assert restored.snapshot() == store.snapshot()

    @pytest.mark.parametrize("position", [None, b"", b"not json", b"\xff\xfe"])
    def test_unreadable_starts_fresh(self, position):
        assert len(CursorStore.from_position(position)) == 0

    def test_bad_entry_is_skipped(self):
        store = CursorStore.from_position(b'{"orders": 3, "users": [1, 2]}')

        assert store.get("orders") == Cursor.counter(3)
        assert store.get("users") is None

    def test_legacy_scalar_counter(self):
        store = CursorStore.from_position(b"42", single_table="orders")

        assert store.get("orders") == Cursor.counter(42)

    def test_legacy_scalar_value(self):
        store = CursorStore.from_position(b'"2024-01-01"', single_table="orders")

        assert store.get("orders") == Cursor(value="2024-01-01")

    def test_legacy_digit_string(self):
        store = CursorStore.from_position(b'"17"', single_table="orders")

        assert store.get("orders") == Cursor.counter(17)

    def test_legacy_scalar_needs_single_table(self):
        assert len(CursorStore.from_position(b"42")) == 0
