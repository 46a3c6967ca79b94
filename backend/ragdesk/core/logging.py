"""Logging utilities for ragdesk."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import orjson

_DEFAULT_LEVEL = os.environ.get("RAGDESK_LOG_LEVEL", "INFO")
_DEFAULT_JSON = os.environ.get("RAGDESK_LOG_JSON", "1") not in {"0", "false", "no"}


class JsonFormatter(logging.Formatter):
    """Lightweight JSON log formatter.

    Attributes passed through ``extra`` with a ``ctx_`` prefix (``ctx_document_id``,
    ``ctx_attempt``, ``ctx_session_id`` ...) are copied into the payload.
    """

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - thin wrapper
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = record.stack_info
        for key, value in record.__dict__.items():
            if key.startswith("ctx_"):
                payload[key[4:]] = value
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool = _DEFAULT_JSON) -> None:
    """Configure root logger with optional JSON formatting."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]


def get_logger(name: str = "ragdesk") -> logging.Logger:
    """Return configured logger, configuring root on first call."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


def log_context(**fields: Any) -> dict[str, Any]:
    """Build an ``extra`` mapping whose keys the JSON formatter picks up."""
    return {f"ctx_{key}": value for key, value in fields.items() if value is not None}


__all__ = ["configure_logging", "get_logger", "log_context", "JsonFormatter"]
