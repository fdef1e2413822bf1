"""Structured logging helpers."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable

# SDK and HTTP transport loggers echo every request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "google_genai", "urllib3")

_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Formats log records as one JSON object per line.

    Values passed through `extra=` are copied into the payload, so
    `logger.info("video_done", extra={"session_id": sid})` yields a
    `session_id` field next to the message.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str = "INFO", quiet: Iterable[str] = NOISY_LOGGERS) -> None:
    """Installs the JSON handler on the root logger.

    Args:
        level: Root log level name.
        quiet: Logger names raised to WARNING unless `level` is DEBUG.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())
    if level.upper() != "DEBUG":
        for name in quiet:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
