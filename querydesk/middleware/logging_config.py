"""
Structured logging configuration.

Services log with ``extra={"query_id": ..., "user_id": ...}``; both
formatters surface those keys.

    LOG_FORMAT=json|readable   (default: json in production, readable otherwise)
    LOG_LEVEL=DEBUG|INFO|...   (default: INFO in production, DEBUG otherwise)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Keys copied from ``extra=`` into structured output
CONTEXT_KEYS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
    "query_id",
    "item_id",
    "approval_request_id",
    "user_id",
    "team",
    "action",
    "decision",
    "branch_id",
)

# Short tags for the readable formatter, in display order
_READABLE_TAGS = (
    ("query_id", "query"),
    ("item_id", "item"),
    ("approval_request_id", "request"),
    ("user_id", "user"),
    ("action", "action"),
    ("decision", "decision"),
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "flask_limiter")


def record_context(record: logging.LogRecord) -> dict:
    """The ``CONTEXT_KEYS`` present on ``record``."""
    return {key: getattr(record, key) for key in CONTEXT_KEYS if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line output for a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tags = " ".join(
            f"{label}={getattr(record, key)}"
            for key, label in _READABLE_TAGS
            if getattr(record, key, None) is not None
        )
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"
        if tags:
            line += f" [{tags}]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for ``app``'s environment."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    fmt = os.getenv("LOG_FORMAT", "json" if is_prod else "readable").lower()
    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.setLevel(level)

    # Replaced, not appended, so repeated create_app() calls keep one handler
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
