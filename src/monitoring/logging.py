"""
Structured logging for EventShare.

Log lines come out either as JSON (``LOG_FORMAT=json``, for aggregation)
or as colored console text for development. Both formats carry the
structured ``extra`` fields a module attaches (event_id, distribution_id,
batch, tx_hash, duration_ms) plus the current request context.

Custodial secrets must never reach a log sink, so every message, extra
field, context value and traceback passes through redaction first:
ledger secret seeds, vault ciphertexts, credentials in URLs or
``key=value`` text, and any field whose name marks it as secret.
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
# Redaction
# ============================================================

# (pattern, replacement) applied in order to every logged string
SENSITIVE_PATTERNS = [
    # Ledger secret seed: S followed by 55 base32 characters
    (re.compile(r"\bS[A-Z2-7]{55}\b"), "[REDACTED_SEED]"),
    (re.compile(r"ENC:1:[A-Za-z0-9+/=]+"), "[REDACTED_CIPHERTEXT]"),
    (
        re.compile(
            r"(api[_-]?key|apikey|secret|password|passwd|pwd)([\"']?\s*[:=]\s*[\"']?)([^\s\"',}{]+)",
            re.IGNORECASE,
        ),
        r"\1\2[REDACTED]",
    ),
    (re.compile(r"(Bearer\s+)(\S+)", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(postgres(?:ql)?://[^:/\s]+:)([^@\s]+)(@)"), r"\1[REDACTED]\3"),
]

REDACTED_FIELDS = frozenset({
    "api_key",
    "apikey",
    "authorization",
    "credentials",
    "custodial_secret",
    "custodial_secret_encrypted",
    "database_url",
    "password",
    "secret",
    "secret_key",
    "seed",
    "vault_key",
})

# Attributes every LogRecord has; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _is_secret_field(key: Any) -> bool:
    return str(key).lower().replace("-", "_") in REDACTED_FIELDS


def redact_string(text: str) -> str:
    """Apply every redaction pattern to one string."""
    if not isinstance(text, str):
        return text
    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def redact_sensitive_data(data: Any, depth: int = 0, max_depth: int = 10) -> Any:
    """
    Redact secrets from a nested structure.

    Dict values under a secret-looking key are replaced outright; strings
    anywhere are pattern-redacted. Nesting deeper than ``max_depth`` is cut.
    """
    if depth > max_depth:
        return "[MAX_DEPTH_EXCEEDED]"
    if isinstance(data, dict):
        return {
            key: "[REDACTED]" if _is_secret_field(key) else redact_sensitive_data(value, depth + 1, max_depth)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item, depth + 1, max_depth) for item in data]
    if isinstance(data, str):
        return redact_string(data)
    return data


# ============================================================
# Request context
# ============================================================

_request_context = threading.local()


def set_request_context(**kwargs) -> None:
    """Attach values (request_id, event_id, ...) to every log line on this thread."""
    if not hasattr(_request_context, "data"):
        _request_context.data = {}
    _request_context.data.update(kwargs)


def clear_request_context() -> None:
    _request_context.data = {}


def get_request_context() -> dict[str, Any]:
    return getattr(_request_context, "data", {})


class LoggingContext:
    """
    Temporarily add context to log lines, restoring the outer context on exit.

    Usage:
        with LoggingContext(event_id=event_id, operation="execute_distribution"):
            logger.info("Starting settlement")
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self.previous_context: dict[str, Any] = {}

    def __enter__(self):
        self.previous_context = dict(get_request_context())
        set_request_context(**self.context)
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        clear_request_context()
        if self.previous_context:
            set_request_context(**self.previous_context)
        return False


# ============================================================
# Formatters
# ============================================================


def _structured_fields(record: logging.LogRecord, redact: bool) -> tuple[dict, dict]:
    """Request context and ``extra`` fields of a record."""
    context = get_request_context()
    extras = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}
    if redact:
        return redact_sensitive_data(context), redact_sensitive_data(extras)
    return context, extras


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line:

        {"timestamp": "...", "level": "INFO", "logger": "distribution",
         "message": "Settlement batch 2/3 submitted", "distribution_id": "dist_...",
         "batch": 2, "tx_hash": "..."}

    Warnings and errors also carry ``location``; exceptions carry the
    formatted traceback.
    """

    def __init__(self, include_stack_info: bool = True, redact_sensitive: bool = True):
        super().__init__()
        self.include_stack_info = include_stack_info
        self.redact_sensitive = redact_sensitive

    def _text(self, value: str) -> str:
        return redact_string(value) if self.redact_sensitive else value

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": self._text(record.getMessage()),
        }
        if record.levelno >= logging.WARNING:
            entry["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info and self.include_stack_info:
            entry["exception"] = self._text(self.formatException(record.exc_info))

        context, extras = _structured_fields(record, self.redact_sensitive)
        if context:
            entry["context"] = context
        entry.update(extras)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output for development, redacted like the JSON form."""

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
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        line = (
            f"{color}{timestamp} {record.levelname[0]} [{record.name}]{self.RESET} "
            f"{redact_string(record.getMessage())}"
        )

        context, extras = _structured_fields(record, redact=True)
        if context:
            line += f" {color}({' '.join(f'{k}={v}' for k, v in context.items())}){self.RESET}"
        if extras:
            line += f" [{', '.join(f'{k}={v}' for k, v in extras.items())}]"
        if record.exc_info:
            line += "\n" + redact_string(self.formatException(record.exc_info))
        return line


# ============================================================
# Setup
# ============================================================


def configure_logging(
    level: str | None = None,
    json_output: bool | None = None,
    log_file: str | None = None,
) -> None:
    """
    Install EventShare's handlers on the root logger.

    Args:
        level: Log level name (default: LOG_LEVEL, then INFO)
        json_output: JSON lines on stdout (default: LOG_FORMAT == "json")
        log_file: Also append JSON lines to this file
    """
    level = level or os.getenv("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "").lower() == "json"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    stdout = logging.StreamHandler(sys.stdout)
    stdout.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root.addHandler(stdout)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    for noisy in ("urllib3", "werkzeug", "stellar_sdk"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; call as ``get_logger(__name__)``."""
    return logging.getLogger(name)
