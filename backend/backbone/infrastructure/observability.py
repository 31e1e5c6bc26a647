"""Structured Logging — JSON formatter and setup for the data layer's log events.

Invariants:
    - Every line carries timestamp, level, logger name, and message
    - Known extra fields (subscription_id, attempt, status, error_code, ...) surfaced only when set
    - setup_logging is idempotent: calling it again replaces the handler it installed

Design Decisions:
    - JSONFormatter over third-party libs: zero dependencies, full control
    - Non-JSON-native extras (enums, datetimes, query context values) rendered with str()
    - setup_logging called once on startup via lifespan
"""

import logging
import json
from datetime import datetime, timezone

EXTRA_FIELDS = (
    "subscription_id", "attempt", "max_retries", "status", "error_code",
    "category", "severity", "latency_ms", "path", "query_context",
)

_HANDLER_NAME = "backbone"


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, record.__dict__[key]) for key in EXTRA_FIELDS
            if record.__dict__.get(key) is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json") -> logging.Handler:
    """Install the backbone handler on the root logger."""
    for existing in list(logging.root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            logging.root.removeHandler(existing)
    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s - %(message)s",
        ))
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
    return handler
