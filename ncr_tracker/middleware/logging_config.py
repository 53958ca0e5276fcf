"""
Structured logging for the NCR Tracker.

Workflow code logs with ``extra={"ncr_id": ..., "action": ..., ...}``;
the formatters below lift those keys into the output so every transition,
rejection and persistence failure can be traced back to one NCR.

    production   JSONFormatter, one object per line
    development  ReadableFormatter, colored, ``[ncr=<id> action=<a>]`` suffix
    LOG_LEVEL    env override of the level
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import has_request_context, request

# ``extra={...}`` keys carried into log output
EXTRA_KEYS = (
    "method",
    "path",
    "status",
    "remote_addr",
    "ncr_id",
    "action",
    "from_stage",
    "to_stage",
    "principal_id",
    "error_code",
)

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


def _extras(record: logging.LogRecord) -> dict:
    found = {}
    for key in EXTRA_KEYS:
        val = getattr(record, key, None)
        if val is not None:
            found[key] = val
    return found


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with workflow extras and request path."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        if has_request_context():
            entry.setdefault("method", request.method)
            entry.setdefault("path", request.path)
        entry.update(_extras(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line output for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        tags = [f"{key}={value}" for key, value in (
            ("ncr", getattr(record, "ncr_id", None)),
            ("action", getattr(record, "action", None)),
        ) if value]
        suffix = f" [{' '.join(tags)}]" if tags else ""
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}{suffix}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger for *app*."""
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()  # repeated create_app() calls
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if production else "readable")
