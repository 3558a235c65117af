"""
Structured logging with request ID support.

Features:
- JSON logs in production, pretty logs in development.
- Context-bound request_id for correlation.
- log_event helper for consistent structured logs with safe truncation
  and redaction of credential-like fields.
"""

import json
import logging
import os
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Attributes every LogRecord has; anything else came in through `extra`.
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

_SENSITIVE_KEY = re.compile(r"token|secret|signature|authorization|api_key|password", re.IGNORECASE)

_LATENCY_BUCKETS = ((100, "<100ms"), (500, "100-500ms"), (2000, "500ms-2s"), (10000, "2-10s"))


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    """Fetch the current request_id from context (if any)."""
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def _format_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace('+00:00', 'Z')


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label; AI-backed requests routinely take seconds."""
    if latency_ms is None:
        return "unknown"
    for upper, label in _LATENCY_BUCKETS:
        if latency_ms < upper:
            return label
    return ">=10s"


def _extra_fields(record: logging.LogRecord) -> Dict[str, object]:
    return {
        key: "[redacted]" if _SENSITIVE_KEY.search(key) else value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and key != "request_id" and value is not None
    }


class RequestIdFilter(logging.Filter):
    """Inject request_id into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _format_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(_extra_fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        rid = getattr(record, "request_id", None)
        rid_part = f" [rid={rid}]" if rid else ""
        ts = _format_timestamp(record)
        fields = _extra_fields(record)
        field_part = " " + " ".join(f"{k}={v}" for k, v in fields.items()) if fields else ""
        line = f"{ts} {record.levelname} [studyhub]{rid_part} {record.getMessage()}{field_part}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development") -> None:
    """Configure structured logging based on environment."""
    logger = logging.getLogger("studyhub")
    logger.setLevel(logging.INFO)

    formatter: logging.Formatter
    if env.lower() == "production":
        formatter = JsonFormatter()
    else:
        formatter = PrettyFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())

    logger.handlers = [handler]
    logger.propagate = True


def _scrub(key: str, value, limit: int = 500) -> str:
    """Render an extra field for logging: secrets redacted, long values truncated."""
    if _SENSITIVE_KEY.search(key):
        return "[redacted]"
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    subject_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
    exc_info: bool = False,
):
    """
    Emit one structured event on the studyhub logger.

    Every event carries request_id (from context when not given) and the
    subject it concerns. Values in extra are scrubbed: anything keyed like a
    token, secret, signature or authorization header is never written out.
    """
    logger = logging.getLogger("studyhub")
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    payload: Dict[str, object] = {
        "request_id": request_id or get_request_id(),
        "subject_id": subject_id,
    }
    if event_type:
        payload["event_type"] = event_type
    if error_code:
        payload["error_code"] = error_code
    for key, value in (extra or {}).items():
        payload[key] = _scrub(key, value)

    log_fn = getattr(logger, level, logger.info)
    log_fn(msg, extra=payload, exc_info=exc_info)
