"""Structured logging configuration

Every line written by the ``tokencart`` logger is one JSON object. Context is
passed with ``extra=``; only the fields in ``CONTEXT_FIELDS`` are emitted, so
credentials or tokens handed to a log call by mistake never reach the output.
"""
import json
import logging
import sys
import time
from typing import IO, Any, Dict, Iterable, Optional

LOGGER_NAME = "tokencart"

CONTEXT_FIELDS = (
    "request_id",
    "principal_id",
    "owner_id",
    "token_id",
    "operation",
    "action",
    "reason",
)


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line"""

    default_time_format = "%Y-%m-%dT%H:%M:%S"
    default_msec_format = "%s.%03dZ"
    converter = time.gmtime

    def __init__(self, fields: Iterable[str] = CONTEXT_FIELDS):
        super().__init__()
        self.fields = tuple(fields)

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, value)
            for name, value in ((name, getattr(record, name, None)) for name in self.fields)
            if value is not None
        )

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)


class _JSONHandler(logging.StreamHandler):
    """Marks the handler installed by :func:`setup_logging`"""


def setup_logging(log_level: str = "INFO", stream: Optional[IO[str]] = None) -> logging.Logger:
    """Point the ``tokencart`` logger at ``stream`` (stdout by default).

    Calling it again replaces the handler it installed earlier and leaves
    handlers added by anything else (pytest's caplog, for one) in place.
    """
    log = logging.getLogger(LOGGER_NAME)
    log.setLevel(log_level.upper())

    for handler in [h for h in log.handlers if isinstance(h, _JSONHandler)]:
        log.removeHandler(handler)

    handler = _JSONHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())
    log.addHandler(handler)
    return log


logger = setup_logging()
