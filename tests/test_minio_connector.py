"""Tests for the MinIO lake writer."""

import io
from datetime import datetime, timezone

import pandas as pd
import pytest

from bigquery_ingestion.connectors.minio_connector import MinIOConnector, serialize_frame


class FakeMinio:
    def __init__(self):
        self.objects = {}

    def put_object(self, bucket_name, object_name, data, length, content_type):
        payload = data.read()
        assert len(payload) == length
        self.objects[(bucket_name, object_name)] = (payload, content_type)


@pytest.fixture
def connector():
    conn = MinIOConnector({"endpoint": "localhost:9000", "bucket": "raw-data"}, prefix="/bq/")
    conn.client = FakeMinio()
    return conn


class TestSerializeFrame:
    def test_csv(self):
        data = serialize_frame(pd.DataFrame([{"id": 1, "name": "a"}]), "csv")

        assert data.decode("utf-8").splitlines() == ["id,name", "1,a"]

    def test_parquet(self):
        df = pd.DataFrame([{"id": 1, "name": "a"}, {"id": 2, "name": "b"}])

        restored = pd.read_parquet(io.BytesIO(serialize_frame(df, "parquet")))

        assert list(restored["id"]) == [1, 2]

    def test_unsupported(self):
        with pytest.raises(ValueError, match="Unsupported file format"):
            serialize_frame(pd.DataFrame(), "json")


class TestMinIOConnector:
    def test_object_name(self, connector):
        when = datetime(2024, 5, 6, tzinfo=timezone.utc)

        assert connector.object_name("orders", "b1", "csv", when) == (
            "bq/orders/cdc/date=2024-05-06/b1.csv"
        )

    def test_write_batch(self, connector):
        uri = connector.write_batch("orders", pd.DataFrame([{"id": 1}]), "b1")

        ((bucket, name), (payload, content_type)), = connector.client.objects.items()
        assert bucket == "raw-data"
        assert name.startswith("bq/orders/cdc/date=") and name.endswith("/b1.csv")
        assert uri == f"s3://raw-data/{name}"
        assert content_type == "text/csv"
        assert payload == b"id\n1\n"

    def test_empty_batch_skipped(self, connector):
        assert connector.write_batch("orders", pd.DataFrame(), "b1") is None
        assert connector.client.objects == {}
