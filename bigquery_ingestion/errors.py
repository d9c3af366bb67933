"""
Source Errors
=============

Exception hierarchy for the BigQuery ingestion source.

Fatal errors (configuration, connection, query) stop the whole run and are
surfaced to the host on the next read. Soft conditions (table not found,
no record ready, teardown in progress) have their own types so callers can
tell them apart from real failures.
"""

from typing import Any, Dict, Optional

__all__ = [
    "SourceError",
    "ConfigurationError",
    "ConnectionError",
    "QueryError",
    "TableNotFoundError",
    "BackoffRetry",
    "SourceStopped",
]


class SourceError(Exception):
    """Base exception for all source errors."""

    def __init__(
        self,
        message: str,
        *,
        table: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.table = table
        self.details = details or {}

        if table:
            message = f"[{table}] {message}"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": str(self),
            "table": self.table,
            "details": self.details,
        }


class ConfigurationError(SourceError):
    """Invalid or missing configuration. Fatal at configure/open time."""


class ConnectionError(SourceError):
    """The warehouse client could not be created."""


class QueryError(SourceError):
    """A warehouse query or page fetch failed."""


class TableNotFoundError(SourceError):
    """The table disappeared between discovery and read.

    Readers treat this as zero rows for the current cycle.
    """


class BackoffRetry(SourceError):
    """No record is ready yet; the host should poll again later."""

    def __init__(self, message: str = "no record available, retry later") -> None:
        super().__init__(message)


class SourceStopped(SourceError):
    """The source is being torn down."""

    def __init__(self, message: str = "iterator is stopped") -> None:
        super().__init__(message)
