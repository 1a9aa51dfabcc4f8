"""One JSON object per log line.

Each line carries a UTC timestamp, level, logger and event name. The event's
fields are flattened next to them, and exception text goes under ``exc``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

ENVELOPE_KEYS = ("ts", "level", "logger", "message", "exc")

# chatty per-request loggers from the HTTP stack
QUIET_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="seconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            for key, value in fields.items():
                if key in ENVELOPE_KEYS:
                    key = f"field_{key}"
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> logging.Logger:
    root = logging.getLogger()
    if root.handlers:
        return root
    root.setLevel(level)
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return root


def log_json(logger: logging.Logger, msg: str, **extra: Any) -> None:
    logger.info(msg, extra={"extra": extra})


def warn_json(logger: logging.Logger, msg: str, **extra: Any) -> None:
    logger.warning(msg, extra={"extra": extra})
