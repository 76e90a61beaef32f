"""
Logging setup for SheetFlow.

Lifecycle services log with the sheet context attached through ``extra=``:

    logger.info("Sheet %s approved", sheet.id,
                extra={"sheet_id": sheet.id, "tenant_id": tenant_id,
                       "event_type": "sheet_approve"})

Production writes one JSON object per line; development and tests get a
single readable line with the same context in brackets. LOG_FORMAT
("json" / "readable") overrides the choice, LOG_LEVEL sets the level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Context attributes services attach via extra=, in display order
CONTEXT_KEYS = ("tenant_id", "actor_id", "sheet_id", "event_type")

# Request attributes attached by the timing middleware; JSON output only
REQUEST_KEYS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")

# Chatty libraries held at WARNING
QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic", "flask_limiter")


def record_context(record: logging.LogRecord) -> dict:
    """Return the lifecycle context carried by *record*, skipping unset keys."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_KEYS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_context(record))
        for key in REQUEST_KEYS:
            val = getattr(record, key, None)
            if val not in (None, ""):
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:00:01 INFO     sheetflow.services.x [tenant=1 sheet=5 sheet_approve] msg``"""

    LABELS = {"tenant_id": "tenant", "actor_id": "actor", "sheet_id": "sheet"}

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = []
        for key, val in record_context(record).items():
            label = self.LABELS.get(key)
            parts.append(f"{label}={val}" if label else str(val))
        context = f" [{' '.join(parts)}]" if parts else ""
        line = f"{ts} {record.levelname:<8} {record.name}{context} {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def select_formatter(app) -> logging.Formatter:
    """JSON in production unless LOG_FORMAT says otherwise."""
    choice = os.getenv("LOG_FORMAT", "").lower()
    if choice == "json":
        return JSONFormatter()
    if choice == "readable":
        return ReadableFormatter()
    is_prod = not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)
    return JSONFormatter() if is_prod else ReadableFormatter()


def configure_logging(app):
    """Install a single stderr handler on the root logger."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing
    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    # repeated create_app calls in tests must not stack handlers
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(select_formatter(app))
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s formatter=%s",
                        level_name, type(handler.formatter).__name__)
