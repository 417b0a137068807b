"""Structured logging for the engine.

Log calls may attach engine identifiers with ``extra``, e.g.
``logger.info("run recorded", extra={"task_id": "A", "run_id": run_id})``;
the JSON formatter lifts them into top-level fields.
"""

import json
import logging
import sys
from typing import IO, Any, Dict, Optional

from cdc_engine.common.config import get_settings

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

CONTEXT_FIELDS = ("pipeline", "task_id", "run_id", "cursor_id", "table_id", "sequence_number")

# Third-party loggers too chatty at INFO
QUIET_LOGGERS = ("urllib3", "faker")


class JSONFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread": record.threadName,
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    stream: Optional[IO[str]] = None,
) -> None:
    """
    Configure the root logger with a single console handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL);
            defaults to the configured level
        log_format: "json" or "text"; defaults to the configured format
        stream: Output stream (default stdout)
    """
    settings = get_settings()
    level = getattr(logging, (log_level or settings.app.log_level).upper(), logging.INFO)
    fmt = (log_format or settings.app.log_format).lower()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(TEXT_FORMAT) if fmt == "text" else JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module (pass ``__name__``)."""
    return logging.getLogger(name)
