"""
Structured Logger
=================

Logging setup for the BigQuery ingestion source.

Features:
- JSON-formatted log lines
- Thread-local context (table, cycle, ...) attached to every record
- Optional file output
"""

import json
import logging
import os
import sys
import threading
import traceback
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Optional

# Thread-local storage for context
_context = threading.local()

_RESERVED_ATTRS = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName', 'context'
})

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def current_context() -> Dict:
    """Copy of the context bound to the current thread."""
    return dict(getattr(_context, 'data', {}))


@contextmanager
def log_context(**kwargs):
    """
    Add context to all logs emitted by this thread within scope.

    Usage:
        with log_context(table="orders", cycle=3):
            logger.info("Reading page")  # includes table and cycle
    """
    old_data = current_context()
    _context.data = {**old_data, **kwargs}
    try:
        yield
    finally:
        _context.data = old_data


class ContextFilter(logging.Filter):
    """Copies the thread-local context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = current_context()
        return True


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
            "module": record.module,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        context = getattr(record, 'context', None) or current_context()
        if context:
            log_entry["context"] = context

        if self.include_extra:
            for key in set(record.__dict__.keys()) - _RESERVED_ATTRS:
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
):
    """
    Configure the root logger.

    Args:
        level: Log level name
        json_format: Use JSON lines instead of plain text
        log_file: Also write logs to this file
    """
    formatter = JsonFormatter() if json_format else logging.Formatter(TEXT_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    root.handlers = []
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        root.addHandler(handler)
