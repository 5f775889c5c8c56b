"""
Structured logging for TrackArena.

Provides JSON-formatted logging suitable for log aggregation, and a
colored console format for development.

Features:
- JSON output format for easy parsing
- Settlement context (reference, payer_id) attached to every line
- Redaction of bot tokens, private keys and API keys
- Configurable log level
"""

import json
import logging
import os
import re
import sys
import threading
from datetime import UTC, datetime
from typing import Any

# ============================================================
# Sensitive Data Redaction
# ============================================================

SENSITIVE_PATTERNS = [
    # Bot API URLs embed the token in the path
    (re.compile(r"(/bot)(\d{6,12}:[A-Za-z0-9_-]{20,})"), r"\1[REDACTED]"),
    # Bare bot tokens
    (re.compile(r"\b\d{6,12}:[A-Za-z0-9_-]{30,}\b"), "[REDACTED_BOT_TOKEN]"),
    # key=value style secrets
    (re.compile(r"(api[_-]?key|apikey|token|secret|private[_-]?key)([\"']?\s*[:=]\s*[\"']?)([^\s\"',}{]+)", re.IGNORECASE), r"\1\2[REDACTED]"),
    # Bearer tokens
    (re.compile(r"(Bearer\s+)([^\s]+)", re.IGNORECASE), r"\1[REDACTED]"),
    # 64-byte secret keys as JSON byte arrays
    (re.compile(r"\[\s*(?:\d{1,3}\s*,\s*){63}\d{1,3}\s*\]"), "[REDACTED_PRIVATE_KEY]"),
    # 64-byte secret keys in base58 (public keys are at most 44 chars)
    (re.compile(r"\b[1-9A-HJ-NP-Za-km-z]{80,90}\b"), "[REDACTED_PRIVATE_KEY]"),
]

REDACTED_FIELDS = {
    "secret",
    "api_key",
    "apikey",
    "api-key",
    "x_api_key",
    "token",
    "bot_token",
    "private_key",
    "secret_key",
    "authorization",
}

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def redact_sensitive_data(data: Any, depth: int = 0, max_depth: int = 10) -> Any:
    """
    Recursively redact sensitive data from logs.

    Args:
        data: The data to redact (can be dict, list, string, or other)
        depth: Current recursion depth
        max_depth: Maximum recursion depth to prevent infinite loops

    Returns:
        Data with sensitive information redacted
    """
    if depth > max_depth:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            key_lower = str(key).lower().replace("-", "_")
            if key_lower in REDACTED_FIELDS:
                result[key] = "[REDACTED]"
            else:
                result[key] = redact_sensitive_data(value, depth + 1, max_depth)
        return result

    elif isinstance(data, list):
        return [redact_sensitive_data(item, depth + 1, max_depth) for item in data]

    elif isinstance(data, str):
        return redact_string(data)

    else:
        return data


def redact_string(text: str) -> str:
    """Redact sensitive patterns from a string."""
    if not isinstance(text, str):
        return text

    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


# Thread-local storage for settlement/request context
_log_context = threading.local()


def set_log_context(**kwargs) -> None:
    """Set context values for the current thread."""
    if not hasattr(_log_context, "data"):
        _log_context.data = {}
    _log_context.data.update(kwargs)


def clear_log_context() -> None:
    _log_context.data = {}


def get_log_context() -> dict[str, Any]:
    return getattr(_log_context, "data", {})


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.000Z",
        "level": "INFO",
        "logger": "trackarena.settlement",
        "message": "Payment settled",
        "context": {"reference": "...", "payer_id": "..."},
        ...
    }
    """

    def __init__(self, include_stack_info: bool = True, redact_sensitive: bool = True):
        super().__init__()
        self.include_stack_info = include_stack_info
        self.redact_sensitive = redact_sensitive

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if self.redact_sensitive:
            message = redact_string(message)

        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }

        if record.levelno >= logging.WARNING:
            log_entry["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info and self.include_stack_info:
            exception = self.formatException(record.exc_info)
            log_entry["exception"] = redact_string(exception) if self.redact_sensitive else exception

        context = get_log_context()
        if context:
            log_entry["context"] = redact_sensitive_data(context) if self.redact_sensitive else context

        for key, value in _extra_fields(record).items():
            if self.redact_sensitive:
                value = redact_sensitive_data(value)
            log_entry[key] = value

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter with colors."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET

        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        level = record.levelname[0]

        msg = f"{color}{timestamp} {level} [{record.name}]{reset} {redact_string(record.getMessage())}"

        context = get_log_context()
        if context:
            ctx_str = " ".join(f"{k}={v}" for k, v in context.items())
            msg += f" {color}({ctx_str}){reset}"

        extras = [
            f"{key}={redact_sensitive_data(value)}"
            for key, value in _extra_fields(record).items()
        ]
        if extras:
            msg += f" [{', '.join(extras)}]"

        if record.exc_info:
            msg += "\n" + redact_string(self.formatException(record.exc_info))

        return msg


def configure_logging(
    level: str = "INFO",
    json_output: bool | None = None,
    log_file: str | None = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Use JSON format (from LOG_FORMAT if None)
        log_file: Optional file path for log output
    """
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "").lower() == "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    formatter = JSONFormatter() if json_output else ConsoleFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())  # Always JSON for files
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LoggingContext:
    """
    Context manager for adding temporary context to logs.

    Usage:
        with LoggingContext(reference=entry.reference, payer_id=entry.payer_id):
            logger.info("Settling payment")
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self.previous_context = {}

    def __enter__(self):
        self.previous_context = get_log_context().copy()
        set_log_context(**self.context)
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        clear_log_context()
        if self.previous_context:
            set_log_context(**self.previous_context)
        return False
