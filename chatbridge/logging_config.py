"""JSON logging for chatbridge.

Records are one JSON object per line. The ids that tie a record to a routing
pass (``message_id``, ``conversation_id``, ``platform``) are lifted out of the
structured context to top-level keys so log queries can filter on them.
Credentials that end up in messages or context (Bot API tokens in URLs,
bearer keys) are masked before anything is written.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Optional, TextIO

CORRELATION_FIELDS = ("message_id", "conversation_id", "platform")
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")
SECRET_KEYS = {"api_key", "api_token", "api_access_token", "bot_token", "authorization", "secret_token"}
MASK = "***"

_SECRET_PATTERNS = (
    (re.compile(r"/bot\d+:[^/\s]+"), f"/bot{MASK}"),
    (re.compile(r"\b\d{5,}:[A-Za-z0-9_-]{20,}\b"), MASK),
    (re.compile(r"(Bearer\s+)\S+", re.IGNORECASE), rf"\g<1>{MASK}"),
)


def redact(value: Any) -> Any:
    """Mask credentials in strings, recursing into dicts and lists."""
    if isinstance(value, str):
        for pattern, replacement in _SECRET_PATTERNS:
            value = pattern.sub(replacement, value)
        return value
    if isinstance(value, dict):
        return {k: MASK if str(k).lower() in SECRET_KEYS else redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
        }

        context = dict(getattr(record, "context", None) or {})
        for name in CORRELATION_FIELDS:
            if context.get(name) is not None:
                entry[name] = context.pop(name)
        if context:
            entry["context"] = redact(context)

        if record.exc_info:
            entry["exception"] = redact(self.formatException(record.exc_info))

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> None:
    """Route every logger through one JSON handler on stdout."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), handlers=[handler], force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"chatbridge.{name}")


class ConversationLogger(logging.LoggerAdapter):
    """Attaches message/conversation ids to every record of one routing pass."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        if context or self.extra:
            kwargs["extra"] = {"context": {**self.extra, **(context or {})}}
        return msg, kwargs
