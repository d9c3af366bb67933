"""
MinIO Target Connector
======================

Lands change batches in the MinIO raw bucket (S3-compatible).

Object layout:
    <bucket>/<prefix>/<table>/cdc/date=YYYY-MM-DD/<batch_id>.<csv|parquet>
"""

import io
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

import pandas as pd
from minio import Minio

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "csv": "text/csv",
    "parquet": "application/octet-stream",
}


def serialize_frame(df: pd.DataFrame, file_format: str = "csv", compression: str = "snappy") -> bytes:
    """
    Encode a batch for upload.

    Args:
        df: Batch rows
        file_format: 'csv' or 'parquet'
        compression: Parquet compression codec

    Returns:
        Encoded bytes

    Raises:
        ValueError: for an unsupported format
    """
    if file_format == "parquet":
        buffer = io.BytesIO()
        df.to_parquet(buffer, index=False, compression=compression)
        return buffer.getvalue()
    if file_format == "csv":
        return df.to_csv(index=False).encode("utf-8")
    raise ValueError(f"Unsupported file format: {file_format}")


class MinIOConnector:
    """
    Writes one object per table per flushed batch.
    """

    def __init__(self, config: Dict, prefix: str = "bigquery"):
        """
        Initialize MinIO connector.

        Args:
            config: Connection configuration dict with endpoint, access_key, secret_key, bucket
            prefix: Top-level folder for this source inside the bucket
        """
        self.config = config
        self.prefix = prefix.strip("/")
        self.bucket = config.get("bucket", "raw-data")
        self.client = None

    def connect(self):
        """Create the client and make sure the bucket exists."""
        self.client = Minio(
            endpoint=self.config["endpoint"],
            access_key=self.config["access_key"],
            secret_key=self.config["secret_key"],
            secure=self.config.get("secure", False)
        )

        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
            logger.info(f"Created bucket: {self.bucket}")

        logger.info(f"Connected to MinIO: {self.config['endpoint']}, bucket: {self.bucket}")

    def object_name(self, table: str, batch_id: str, file_format: str, when: Optional[datetime] = None) -> str:
        when = when or datetime.now(timezone.utc)
        return f"{self.prefix}/{table}/cdc/date={when:%Y-%m-%d}/{batch_id}.{file_format}"

    def write_batch(self, table: str, df: pd.DataFrame, batch_id: str, file_format: str = "csv") -> Optional[str]:
        """
        Upload one batch of a table.

        Returns:
            s3:// URI of the object, None when the batch is empty
        """
        if df.empty:
            logger.debug(f"Empty batch for {table}, nothing to write")
            return None

        data = serialize_frame(df, file_format)
        object_name = self.object_name(table, batch_id, file_format)
        self.client.put_object(
            bucket_name=self.bucket,
            object_name=object_name,
            data=io.BytesIO(data),
            length=len(data),
            content_type=CONTENT_TYPES[file_format]
        )

        logger.info(f"Written {len(df)} rows to s3://{self.bucket}/{object_name}")
        return f"s3://{self.bucket}/{object_name}"
