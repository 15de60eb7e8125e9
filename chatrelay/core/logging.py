"""
Structured logging for the chat relay.

Every line carries the request id and, once a relay is streaming, its
stream id. Structured ``data`` is scrubbed before it is written: message
content, credentials and session tokens never reach a log sink.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, Dict, Optional

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
stream_id_ctx: ContextVar[Optional[str]] = ContextVar("stream_id", default=None)

REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset(
    {"authorization", "api_key", "apikey", "token", "cookie", "content", "messages", "secret_key"}
)


def redact(value: Any) -> Any:
    """Return ``value`` with sensitive keys masked, recursing into containers."""
    if isinstance(value, dict):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def bind_stream(stream_id: str) -> None:
    """Tag subsequent log lines in this context with a relay stream id."""
    stream_id_ctx.set(stream_id)


def _context_fields() -> Dict[str, str]:
    fields: Dict[str, str] = {}
    request_id = request_id_ctx.get()
    if request_id:
        fields["request_id"] = request_id
    stream_id = stream_id_ctx.get()
    if stream_id:
        fields["stream_id"] = stream_id
    return fields


def _record_data(record: logging.LogRecord) -> Any:
    data = getattr(record, "data", None)
    return redact(data) if data else None


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context_fields(),
        }
        data = _record_data(record)
        if data:
            log_data["data"] = data
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        fields = _context_fields()
        scope = (fields.get("request_id") or "-")[:8]
        if "stream_id" in fields:
            scope += f"/{fields['stream_id'][:8]}"

        message = (
            f"{timestamp} | {color}{record.levelname:8}{self.RESET} | {scope} | "
            f"{record.name} | {record.getMessage()}"
        )
        data = _record_data(record)
        if data:
            message += f" | {data}"
        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"
        return message


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that accepts a ``data`` kwarg for structured fields."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get("extra", {})
        if "data" in kwargs:
            extra["data"] = kwargs.pop("data")
        kwargs["extra"] = extra
        return msg, kwargs


_loggers: Dict[str, ContextLogger] = {}


def get_logger(name: str) -> ContextLogger:
    if name not in _loggers:
        _loggers[name] = ContextLogger(logging.getLogger(name), {})
    return _loggers[name]


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Install relay formatters on the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(StructuredFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    # Upstream clients log full URLs and headers at INFO/DEBUG.
    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
