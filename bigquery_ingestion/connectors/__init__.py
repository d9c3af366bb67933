"""
Ingestion Connectors
====================

Source and target connectors for the BigQuery ingestion source.
"""

from .bigquery_connector import BigQueryConnector, QueryResult
from .minio_connector import MinIOConnector

__all__ = ["BigQueryConnector", "QueryResult", "MinIOConnector"]
