"""Structured logging for stream diagnostics. Credentials never reach log output; raw payloads are truncated."""

from __future__ import annotations

import json
import logging
import re
import sys
from typing import Any

# Matches "api_key", "Authorization", "bot_token", but not "completion_tokens".
_SECRET_KEY = re.compile(r"(^|[_-])(api_?key|authorization|token|password|secret)$", re.IGNORECASE)
_SECRET_VALUE = re.compile(r"(bearer\s+\S+|\bsk-[A-Za-z0-9_-]{8,})", re.IGNORECASE)
MAX_VALUE_CHARS = 300

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RECORD_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        "asctime",
    )
)


def _is_secret_key(key: str) -> bool:
    return bool(_SECRET_KEY.search(key))


def _redact(obj: Any, key: str = "") -> Any:
    if key and _is_secret_key(key):
        return "[REDACTED]"
    if isinstance(obj, dict):
        return {k: _redact(v, str(k)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_redact(v) for v in obj]
    if isinstance(obj, str):
        text = _SECRET_VALUE.sub("[REDACTED]", obj)
        if len(text) > MAX_VALUE_CHARS:
            text = text[:MAX_VALUE_CHARS] + f"...(+{len(text) - MAX_VALUE_CHARS} chars)"
        return text
    return obj


class StructuredFormatter(logging.Formatter):
    """JSON or key=value lines. ``extra`` fields such as ``stream_id`` are emitted as top-level keys."""

    def __init__(self, use_json: bool = True) -> None:
        super().__init__()
        self.use_json = use_json

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": _redact(record.getMessage()),
        }
        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                log_dict[key] = _redact(value, key)
        if self.use_json:
            return json.dumps(log_dict, default=str)
        return " ".join(f"{k}={v!r}" for k, v in log_dict.items())


def setup_logging(level: str = "INFO", use_json: bool = True, logger_name: str = "llmstream") -> logging.Logger:
    """Attach a StructuredFormatter handler to ``logger_name`` (idempotent) and set its level."""
    log = logging.getLogger(logger_name)
    log.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in log.handlers:
        if isinstance(handler.formatter, StructuredFormatter):
            handler.formatter.use_json = use_json
            return log
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter(use_json=use_json))
    log.addHandler(handler)
    return log
