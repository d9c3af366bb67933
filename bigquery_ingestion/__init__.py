"""
BigQuery Ingestion Source
=========================

Incremental change capture from Google BigQuery tables:
- Snapshot: full read of every table that has no position yet
- CDC: polling for rows past the last position, per table

Rows are emitted as change records through a bounded channel, each carrying
a position token that is enough to resume after a restart.
"""

from .errors import BackoffRetry, ConfigurationError, SourceError, SourceStopped
from .records import ChangeRecord, Cursor, SyncMode, TableDescriptor
from .source import BigQuerySource

__version__ = "1.0.0"
__all__ = [
    "BigQuerySource",
    "ChangeRecord",
    "Cursor",
    "SyncMode",
    "TableDescriptor",
    "SourceError",
    "ConfigurationError",
    "BackoffRetry",
    "SourceStopped",
]
