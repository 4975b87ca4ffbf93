"""Structured JSON logging for the watcher process and its consumers."""

import json
import logging
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any, TextIO

_RESERVED = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())
_CONFIGURED_FLAG = "_brc20_watcher_configured"


def _json_default(value: Any) -> Any:
    # snapshots passed through `extra=` are logged as JSON objects, not reprs
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class JsonFormatter(logging.Formatter):
    """Serialize log records as compact JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED and not key.startswith("_")
        }
        if context:
            payload["context"] = context

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=_json_default)


def configure_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Configure process-wide JSON logging once."""

    root = logging.getLogger()
    if getattr(root, _CONFIGURED_FLAG, False):
        return

    root.handlers.clear()
    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.addHandler(handler)
    root.setLevel(level.upper())
    setattr(root, _CONFIGURED_FLAG, True)
