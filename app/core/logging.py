"""Logging utilities with JSON formatting, redaction, and request correlation.

This module centralizes logging configuration, including:
- Context-aware request_id propagation via contextvars
- Redaction of secrets (API keys, Supabase keys, cookies) on log records
- Hashing of quota identifiers so related lines stay correlatable without
  exposing user ids, session ids or IPs
- JSON formatter for machine-friendly logs
- Configurable stdout/file handlers with rotation support
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from app.core.config import LogSettings, settings

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

REDACTED = "[REDACTED]"

# Default sensitive keys to redact from structured fields
SENSITIVE_KEYS_DEFAULT: set[str] = {
    "api_key",
    "x-api-key",
    "authorization",
    "token",
    "secret",
    "password",
    "app_api_keys",
    "service_role_key",
    "anon_key",
    "supabase_key",
    "cookie",
    "set-cookie",
    "session_id",
}

# Fields replaced by a short digest instead of being dropped
IDENTIFIER_KEYS_DEFAULT: set[str] = {
    "identifier",
    "user_id",
    "x-user-id",
    "client_ip",
}

# LogRecord attributes that are not user-supplied extras
_EXCLUDED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "stack",
    "taskName",
}


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_identifier(value: Any) -> str:
    """Return a stable 16-char digest of an identifier for logging."""
    return hashlib.sha256(str(value).encode()).hexdigest()[:16]


def _scrub(key: str, value: Any, sensitive_keys: set[str], identifier_keys: set[str]) -> Any:
    """Redact or hash a single field, recursing into mappings and sequences."""

    lowered = key.lower()
    if lowered in sensitive_keys:
        return REDACTED
    if lowered in identifier_keys and value is not None:
        return hash_identifier(value)
    if isinstance(value, Mapping):
        return {k: _scrub(str(k), v, sensitive_keys, identifier_keys) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub("", v, sensitive_keys, identifier_keys) for v in value)
    return value


def _sanitize_record(
    record: LogRecord,
    sensitive_keys: set[str],
    identifier_keys: set[str] | None = None,
) -> dict[str, Any]:
    """Collect the record's extras with secrets redacted and identifiers hashed."""

    ids = identifier_keys if identifier_keys is not None else IDENTIFIER_KEYS_DEFAULT
    data: dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _EXCLUDED_ATTRS or key.startswith("_"):
            continue
        data[key] = _scrub(key, value, sensitive_keys, ids)
    return data


class RequestIdFilter(logging.Filter):
    """Attach request_id from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact secrets and hash identifiers on the record before formatting.

    The filter marks records it has processed so that identifiers are hashed
    once even when a formatter sanitizes again.
    """

    def __init__(
        self,
        sensitive_keys: Iterable[str] | None = None,
        identifier_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__()
        self.sensitive_keys = set(sensitive_keys or SENSITIVE_KEYS_DEFAULT)
        self.identifier_keys = set(identifier_keys or IDENTIFIER_KEYS_DEFAULT)

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "_scrubbed", False):
            return True
        sanitized = _sanitize_record(record, self.sensitive_keys, self.identifier_keys)
        for key, value in sanitized.items():
            setattr(record, key, value)
        record._scrubbed = True
        return True


class JsonFormatter(logging.Formatter):
    """Format LogRecord as one JSON object per line."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.sensitive_keys = set(sensitive_keys or SENSITIVE_KEYS_DEFAULT)
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        record_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            record_data["request_id"] = request_id

        # Identifiers were already hashed by SensitiveDataFilter when present.
        identifier_keys = set() if getattr(record, "_scrubbed", False) else None
        record_data.update(_sanitize_record(record, self.sensitive_keys, identifier_keys))

        if record.exc_info:
            record_data["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(record_data, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    """Construct the stdout or (rotating) file handler from configuration."""

    if log_settings.output.lower() == "file":
        file_path = Path(log_settings.file_path or "logs/rate-limit.log")
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if log_settings.max_bytes:
            return RotatingFileHandler(
                file_path,
                maxBytes=log_settings.max_bytes,
                backupCount=log_settings.backup_count,
                encoding="utf-8",
            )
        return logging.FileHandler(file_path, encoding="utf-8")

    return logging.StreamHandler(sys.stdout)


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Configure root logger with JSON formatter, redaction and request ids.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log

    level = getattr(logging, cfg.level.upper(), logging.INFO)
    handler = _build_handler(cfg)

    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())

    if cfg.format.lower() == "plain":
        formatter: logging.Formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
    else:
        formatter = JsonFormatter()

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Avoid double logging from uvicorn if it gets re-configured
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
    # supabase-py logs every HTTP round-trip through httpx at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
