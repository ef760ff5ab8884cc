"""
Structured JSON Logging
=======================
Every record becomes a single JSON line. Message routing produces a lot of
near-identical lines (attempt 1, attempt 2, retry, dead-lettered), so the
fields that tell them apart are lifted to the top of the object where a log
query can filter on them:

  {"timestamp":"2024-01-01T00:00:00.123Z","level":"WARNING","service":"leadflow",
   "logger":"messaging.queue","message":"Delivery attempt 2 failed: boom",
   "queue":"new-lead-queue","event_key":"lead:7","retry_count":1}

Anything else passed through `extra=` follows them.

Usage:
  from shared.logger import get_logger
  logger = get_logger(__name__)
  logger.info("Message delivered", extra={"queue": "new-lead-queue"})

SERVICE_NAME and LOG_LEVEL are read once, on the first get_logger() call.
"""
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any

# Attributes every LogRecord carries; anything beyond these came from `extra=`.
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "taskName"}

# Routing fields emitted right after the message, in this order.
_ROUTING_FIELDS = ("topic", "queue", "dlq", "event_type", "event_key", "retry_count")

_configured = False


def _iso_millis(created: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(created)) + f".{int(created % 1 * 1000):03d}Z"


class JsonFormatter(logging.Formatter):
    def __init__(self, service: str) -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        extras = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}

        log_obj: dict[str, Any] = {
            "timestamp": _iso_millis(record.created),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _ROUTING_FIELDS:
            if key in extras:
                log_obj[key] = extras.pop(key)
        log_obj.update(extras)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_obj["stack"] = self.formatStack(record.stack_info)

        return json.dumps(log_obj, default=str)


def _configure_root() -> None:
    root = logging.getLogger()
    formatter = JsonFormatter(os.environ.get("SERVICE_NAME", "leadflow"))
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    for h in root.handlers:
        h.setFormatter(formatter)
    root.setLevel(getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO))


def get_logger(name: str) -> logging.Logger:
    global _configured
    if not _configured:
        _configure_root()
        _configured = True
    return logging.getLogger(name)
