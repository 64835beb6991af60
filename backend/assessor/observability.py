from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
import json
import logging
import re
from typing import Any, Iterator, Mapping
from uuid import uuid4


# Context fields stamped on every record emitted while a request is handled.
CONTEXT_FIELDS: dict[str, ContextVar[str]] = {
    "request_id": ContextVar("request_id", default="-"),
    "assessment_id": ContextVar("assessment_id", default="-"),
}
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")

REDACTED_KEYS = {"authorization", "cookie", "set_cookie", "email", "phone"}
REDACTED_KEY_FRAGMENTS = ("password", "secret", "token", "api_key", "apikey")
TEXT_REDACTIONS = (
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*"), "Bearer [REDACTED]"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[REDACTED_EMAIL]"),
    (re.compile(r"(?<!\w)(?:\+?\d{1,2}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"), "[REDACTED_PHONE]"),
)

_HANDLER_MARKER = "_assessor_handler"


def normalize_request_id(candidate: str | None) -> str:
    """Keep a well-formed client request id, otherwise mint a fresh one."""
    trimmed = (candidate or "").strip()
    return trimmed if REQUEST_ID_PATTERN.fullmatch(trimmed) else str(uuid4())


def current_context() -> dict[str, str]:
    return {name: var.get() for name, var in CONTEXT_FIELDS.items()}


@contextmanager
def log_context(**values: str | None) -> Iterator[None]:
    """Bind request-scoped fields for the duration of the block; ``None`` leaves a field as it is."""
    tokens = [
        (CONTEXT_FIELDS[name], CONTEXT_FIELDS[name].set(value)) for name, value in values.items() if value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def _is_redacted_key(key: str) -> bool:
    normalized = key.strip().lower().replace("-", "_")
    return normalized in REDACTED_KEYS or any(fragment in normalized for fragment in REDACTED_KEY_FRAGMENTS)


def sanitize_for_logging(value: Any, *, max_string_length: int = 240) -> Any:
    """Redact credentials and personal data from values headed for the log stream.

    Question notes and evidence descriptions are free text typed by assessors,
    so they regularly contain contact details. Mappings are walked recursively;
    keys that look like credentials are replaced wholesale.
    """
    if isinstance(value, Mapping):
        sanitized: dict[str, Any] = {}
        for key, item in value.items():
            key_text = str(key)
            if _is_redacted_key(key_text):
                sanitized[key_text] = "[REDACTED]"
            else:
                sanitized[key_text] = sanitize_for_logging(item, max_string_length=max_string_length)
        return sanitized
    if isinstance(value, (list, tuple, set, frozenset)):
        return [sanitize_for_logging(item, max_string_length=max_string_length) for item in value]
    if isinstance(value, bytes):
        return f"[{len(value)} bytes]"
    if isinstance(value, datetime):
        return value.isoformat()
    if not isinstance(value, str):
        return value

    for pattern, replacement in TEXT_REDACTIONS:
        value = pattern.sub(replacement, value)
    if len(value) > max_string_length:
        return f"{value[:max_string_length]}...[truncated]"
    return value


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in current_context().items():
            if not hasattr(record, name):
                setattr(record, name, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record; fields passed through ``extra`` are sanitized and appended."""

    _BUILTIN_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name, value in current_context().items():
            payload[name] = getattr(record, name, value)
        for key, value in vars(record).items():
            if key not in self._BUILTIN_ATTRS and key not in payload:
                payload[key] = sanitize_for_logging(value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logging(level_name: str) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    if any(getattr(handler, _HANDLER_MARKER, False) for handler in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler.addFilter(ContextFilter())
    setattr(handler, _HANDLER_MARKER, True)
    root.addHandler(handler)
