"""
Output Channel
==============

Bounded queue between the table readers and the host. A full channel blocks
the readers, which is the only backpressure in the system.
"""

import logging
import threading
from queue import Empty, Full, Queue
from typing import Optional

from .records import ChangeRecord

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


class OutputChannel:
    """Many producers (readers), one consumer (the host)."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, poll_interval: float = 0.1):
        self._queue: Queue = Queue(maxsize=capacity)
        self._closed = threading.Event()
        self._poll_interval = poll_interval

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def put(self, record: ChangeRecord, cancel: Optional[threading.Event] = None) -> bool:
        """
        Block until the record is accepted.

        Returns:
            True once enqueued, False if the channel was closed or ``cancel``
            was set before there was room
        """
        while not self._closed.is_set():
            if cancel is not None and cancel.is_set():
                return False
            try:
                self._queue.put(record, timeout=self._poll_interval)
                return True
            except Full:
                continue
        return False

    def get_nowait(self) -> ChangeRecord:
        """
        Raises:
            queue.Empty: if no record is ready
        """
        if self._closed.is_set() and self._queue.empty():
            raise Empty
        return self._queue.get_nowait()

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self):
        if self._closed.is_set():
            return
        self._closed.set()
        logger.debug(f"Output channel closed with {self._queue.qsize()} pending record(s)")
