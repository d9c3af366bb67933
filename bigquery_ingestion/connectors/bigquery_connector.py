"""
BigQuery Source Connector
=========================

Connector for reading from a Google BigQuery dataset.
Runs page queries as query jobs and lists the tables of the dataset.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import bigquery

from ..config import SourceConfig
from ..errors import QueryError, SourceStopped, TableNotFoundError

logger = logging.getLogger(__name__)

JOB_POLL_INTERVAL = 0.5


def is_not_found(error: BaseException) -> bool:
    """BigQuery reports dropped tables either as NotFound or in the message."""
    return isinstance(error, NotFound) or "Not found" in str(error)


@dataclass
class QueryResult:
    """Column schema and a lazy, single pass row iterator."""

    schema: List[Tuple[str, str]]
    rows: Iterable[Sequence[Any]]


class BigQueryConnector:
    """
    BigQuery client wrapper shared read-only by every table reader.
    """

    def __init__(self, config: SourceConfig):
        """
        Initialize BigQuery connector.

        Args:
            config: Source configuration with project, dataset and credentials
        """
        self.config = config
        self.client = None
        self._closed = False
        self._close_lock = threading.Lock()

    def connect(self):
        """Create the BigQuery client."""
        if self.config.service_account:
            self.client = bigquery.Client.from_service_account_json(
                self.config.service_account,
                project=self.config.project_id,
                location=self.config.location,
            )
        else:
            self.client = bigquery.Client(
                project=self.config.project_id,
                location=self.config.location,
            )
        logger.info(f"Connected to BigQuery: {self.config.project_id}.{self.config.dataset_id}")

    def disconnect(self):
        """Close the client. Safe to call more than once."""
        with self._close_lock:
            if self._closed or self.client is None:
                return
            self._closed = True
        self.client.close()
        logger.info("BigQuery client closed")

    def table_ref(self, table_id: str) -> str:
        """Fully qualified, backtick quoted table reference."""
        return f"`{self.config.project_id}.{self.config.dataset_id}.{table_id}`"

    def list_tables(self) -> List[str]:
        """
        List the tables of the configured dataset.

        Returns:
            List of table IDs
        """
        dataset = f"{self.config.project_id}.{self.config.dataset_id}"
        try:
            return [table.table_id for table in self.client.list_tables(dataset)]
        except GoogleAPIError as e:
            raise QueryError(f"error while listing tables of {dataset}: {e}") from e

    def run_query(
        self,
        query: str,
        page_size: int,
        cancel: Optional[threading.Event] = None,
    ) -> QueryResult:
        """
        Run a query job, wait for it and open its row iterator.

        The wait is bound to ``cancel``: once it is set the job is cancelled
        and SourceStopped is raised.

        Args:
            query: SQL to run
            page_size: Rows per result page
            cancel: Event set when the run is being torn down

        Returns:
            QueryResult

        Raises:
            TableNotFoundError: if the queried table does not exist
            QueryError: for any other job failure
            SourceStopped: if cancelled while waiting
        """
        logger.debug(f"Running query: {query}")
        try:
            job = self.client.query(query, location=self.config.location)

            while not job.done():
                if cancel is None:
                    time.sleep(JOB_POLL_INTERVAL)
                elif cancel.wait(JOB_POLL_INTERVAL):
                    job.cancel()
                    raise SourceStopped("query cancelled")

            row_iterator = job.result(page_size=page_size)
        except SourceStopped:
            raise
        except GoogleAPIError as e:
            if is_not_found(e):
                raise TableNotFoundError(str(e)) from e
            raise QueryError(f"error while running job: {e}") from e

        schema = [(f.name, f.field_type) for f in row_iterator.schema]
        return QueryResult(schema=schema, rows=self._iter_rows(row_iterator))

    @staticmethod
    def _iter_rows(row_iterator) -> Iterable[Sequence[Any]]:
        try:
            for row in row_iterator:
                yield tuple(row.values())
        except GoogleAPIError as e:
            raise QueryError(f"error while iterating: {e}") from e
