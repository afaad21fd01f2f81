from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import IO, Optional

from teacher_auth.core.config import LOG_LEVEL
from teacher_auth.core.request_context import get_request_id, get_user_id

# Key/value pairs whose value never reaches a log line. Covers "PIN: 123456",
# "new_pin=...", "pin_hash": "..." and JSON-quoted forms.
_SENSITIVE_PATTERNS = [
    re.compile(r"(authorization\s*[:=]\s*bearer\s+)([^\s\"]+)", re.IGNORECASE),
    re.compile(r"(\b(?:token|password|secret)\"?\s*[:=]\s*\"?)([^\s\",}]+)", re.IGNORECASE),
    re.compile(r"(\b(?:new_)?pin(?:_hash)?\"?\s*[:=]\s*\"?)([^\s\",}]+)", re.IGNORECASE),
]

# Optional LogRecord attributes copied into the payload when set via ``extra``.
_OPTIONAL_FIELDS = ("endpoint", "method", "status_code", "action")

_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def mask_sensitive(value: str) -> str:
    for pattern in _SENSITIVE_PATTERNS:
        value = pattern.sub(r"\1***", value)
    return value


class JsonFormatter(logging.Formatter):
    """One JSON object per line; PINs and credentials are masked."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "request_id": getattr(record, "request_id", None) or get_request_id(),
            "user_id": getattr(record, "user_id", None) or get_user_id(),
            "module": record.name,
            "message": mask_sensitive(self.formatMessage(record)),
            "duration_ms": getattr(record, "duration_ms", None),
        }
        for name in _OPTIONAL_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exc_info"] = mask_sensitive(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str = LOG_LEVEL, stream: Optional[IO[str]] = None) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for logger_name in _SERVER_LOGGERS:
        logging.getLogger(logger_name).setLevel(level)
    return handler
