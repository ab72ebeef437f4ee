"""
Logging setup.

- text: human-readable, one line per record (development)
- json: one JSON object per record (log aggregators)
- level from LOG_LEVEL
"""

import json
import logging
import sys
from datetime import datetime, timezone

from roadworks.core.config import settings

# Extra attributes passed through ``logger.info(..., extra={...})``
_EXTRA_KEYS = (
    "event_id",
    "work_order_id",
    "evidence_id",
    "edit_id",
    "client_id",
    "channel",
    "actor_role",
    "from_status",
    "to_status",
    "code",
)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = [f"{k}={getattr(record, k)}" for k in _EXTRA_KEYS if getattr(record, k, None) is not None]
        if extras:
            line += " [" + " ".join(extras) + "]"
        return line


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    level = (level or settings.LOG_LEVEL).upper()
    fmt = (fmt or settings.LOG_FORMAT).lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())

    root = logging.getLogger("roadworks")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
