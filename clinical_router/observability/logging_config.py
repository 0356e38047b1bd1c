"""
Structured logging configuration for the clinical LLM router.

Python's built-in logging with a JSONFormatter: machine-readable JSON in
production, colored text everywhere else. All modules keep using
logging.getLogger(__name__) and pass structured fields through `extra`.

Environments:
- production: JSON to stdout
- development/staging/test: Colored text to stderr

Usage:
    from clinical_router.observability.logging_config import configure_logging

    configure_logging()  # auto-detects from ROUTER_ENV

    logger = logging.getLogger(__name__)
    logger.info("llm_attempt", extra={
        "provider": "openai",
        "model": "gpt-4o-mini",
        "latency_ms": 412.0,
    })
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# ─── Request Context ──────────────────────────────────────────────────

# contextvars, not thread-locals: concurrent routing calls share one
# thread and each asyncio task carries its own copy.
_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)


def set_request_id(request_id: str) -> None:
    """Tag every log record emitted in the current context with request_id."""
    _request_id.set(request_id)


def get_request_id() -> Optional[str]:
    """Get the current request_id, or None outside a tagged context."""
    return _request_id.get()


def clear_request_id() -> None:
    """Clear the request_id from the current context."""
    _request_id.set(None)


# ─── Context Filter ───────────────────────────────────────────────────


class ContextFilter(logging.Filter):
    """Injects request_id into every log record from the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id = get_request_id()
        if request_id:
            record.request_id = request_id  # type: ignore[attr-defined]
        return True


# ─── Record Fields ────────────────────────────────────────────────────


# Attributes every LogRecord carries; anything else arrived through `extra`
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


# ─── JSON Formatter (Production) ──────────────────────────────────────


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line. Event names go in `message`, structured
    fields (provider, model, circuit_breaker, request_id, ...) sit beside
    it at the top level:

        {"timestamp": "...", "level": "WARNING",
         "logger": "clinical_router.llm.circuit_breaker",
         "message": "circuit_opened", "circuit_breaker": "openai", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_extra_fields(record),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


# ─── Dev Formatter (Local Development) ────────────────────────────────


class DevFormatter(logging.Formatter):
    """Colored one-liners: `HH:MM:SS LEVEL logger: event key=value ...`."""

    _LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }
    _RESET = "\033[0m"

    # Routing fields worth reading at a glance, in display order
    INLINE_FIELDS = (
        "request_id", "task", "provider", "model", "circuit_breaker",
        "state", "attempt", "latency_ms", "error",
    )

    def format(self, record: logging.LogRecord) -> str:
        color = self._LEVEL_COLORS.get(record.levelno, self._RESET)
        fields = _extra_fields(record)
        inline = " ".join(
            f"{key}={fields[key]}"
            for key in self.INLINE_FIELDS
            if fields.get(key) is not None
        )

        line = (
            f"{self.formatTime(record, '%H:%M:%S')} "
            f"{color}{record.levelname:<8}{self._RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        if inline:
            line = f"{line} {inline}"
        if record.exc_info and record.exc_info[1]:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# ─── Configuration ────────────────────────────────────────────────────


def configure_logging(
    env: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """
    Configure the root logger based on environment.

    Args:
        env: Override environment. If None, reads from ROUTER_ENV
             (defaults to "development").
        level: Log level (default: INFO).
    """
    env = env or os.environ.get("ROUTER_ENV", "development").lower().strip()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if env == "production":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(DevFormatter())

    handler.addFilter(ContextFilter())
    root_logger.addHandler(handler)

    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
