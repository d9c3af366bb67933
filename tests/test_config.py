"""Tests for source configuration parsing."""

from datetime import timedelta

import pytest

from bigquery_ingestion.config import (
    DEFAULT_POLLING_TIME,
    SourceConfig,
    parse_duration,
    parse_increment_columns,
    parse_order_by,
)
from bigquery_ingestion.errors import ConfigurationError


def _cfg(**extra):
    cfg = {"projectID": "proj", "datasetID": "ds", "tableIDs": "orders"}
    cfg.update(extra)
    return cfg


class TestParseDuration:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("30s", timedelta(seconds=30)),
            ("5m", timedelta(minutes=5)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("1.5h", timedelta(minutes=90)),
            ("250ms", timedelta(milliseconds=250)),
            ("0", timedelta(0)),
        ],
    )
    def test_valid(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "abc", "10", "5 minutes", "1h-5m", "m"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)


class TestParseOrderBy:
    def test_pairs(self):
        assert parse_order_by("orders:id, users:created_at") == {
            "orders": "id",
            "users": "created_at",
        }

    def test_empty(self):
        assert parse_order_by("") == {}

    def test_missing_column(self):
        with pytest.raises(ConfigurationError):
            parse_order_by("orders")


class TestParseIncrementColumns:
    def test_single_default(self):
        assert parse_increment_columns("updated_at") == ("updated_at", {})

    def test_per_table(self):
        assert parse_increment_columns("users:updated_at, events:id") == (
            None,
            {"users": "updated_at", "events": "id"},
        )

    def test_default_with_overrides(self):
        assert parse_increment_columns("id,users:updated_at") == ("id", {"users": "updated_at"})

    def test_empty(self):
        assert parse_increment_columns("") == (None, {})

    def test_two_defaults(self):
        with pytest.raises(ConfigurationError, match="more than one default"):
            parse_increment_columns("id,updated_at")

    def test_missing_column(self):
        with pytest.raises(ConfigurationError):
            parse_increment_columns("users:")


class TestSourceConfig:
    def test_minimal(self):
        config = SourceConfig.from_dict(_cfg())

        assert config.project_id == "proj"
        assert config.dataset_id == "ds"
        assert config.table_ids == ["orders"]
        assert config.discover_tables is False
        assert config.polling_time == DEFAULT_POLLING_TIME
        assert config.increment_column is None
        assert config.service_account is None

    def test_full(self):
        config = SourceConfig.from_dict(_cfg(
            tableIDs="orders, users",
            serviceAccount="/secrets/sa.json",
            incrementingColumnName="updated_at",
            primaryKeyColName="id",
            orderBy="orders:id",
            pollingTime="30s",
            datasetLocation="EU",
        ))

        assert config.table_ids == ["orders", "users"]
        assert config.service_account == "/secrets/sa.json"
        assert config.increment_column == "updated_at"
        assert config.primary_key_column == "id"
        assert config.order_by == {"orders": "id"}
        assert config.polling_time == timedelta(seconds=30)
        assert config.location == "EU"

    def test_discover_all_tables(self):
        config = SourceConfig.from_dict(_cfg(tableIDs="*"))

        assert config.discover_tables is True
        assert config.table_ids == []
        assert config.single_table is None

    @pytest.mark.parametrize("missing", ["projectID", "datasetID", "tableIDs"])
    def test_required_keys(self, missing):
        cfg = _cfg()
        del cfg[missing]

        with pytest.raises(ConfigurationError, match=missing):
            SourceConfig.from_dict(cfg)

    def test_invalid_polling_time(self):
        with pytest.raises(ConfigurationError, match="invalid polling time duration provided"):
            SourceConfig.from_dict(_cfg(pollingTime="soon"))

    def test_non_positive_polling_time(self):
        with pytest.raises(ConfigurationError):
            SourceConfig.from_dict(_cfg(pollingTime="0s"))

    def test_single_table(self):
        assert SourceConfig.from_dict(_cfg()).single_table == "orders"
        assert SourceConfig.from_dict(_cfg(tableIDs="a,b")).single_table is None

    def test_increment_column_per_table(self):
        config = SourceConfig.from_dict(_cfg(
            tableIDs="orders,users",
            incrementingColumnName="users:updated_at",
        ))

        assert config.increment_column is None
        assert config.increment_column_for("users") == "updated_at"
        assert config.increment_column_for("orders") is None

    def test_increment_column_default_applies_to_all(self):
        config = SourceConfig.from_dict(_cfg(
            tableIDs="orders,users",
            incrementingColumnName="id,users:updated_at",
        ))

        assert config.increment_column_for("orders") == "id"
        assert config.increment_column_for("users") == "updated_at"
