"""
Tests for the structured logging configuration.

Validates:
- JSONFormatter produces valid JSON with required fields
- DevFormatter produces human-readable colored text
- ContextFilter injects request_id from the current context
- configure_logging() switches mode based on ROUTER_ENV
- Extra fields (provider, model) appear in JSON output
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from unittest.mock import patch

import pytest

from clinical_router.observability.logging_config import (
    ContextFilter,
    DevFormatter,
    JSONFormatter,
    clear_request_id,
    configure_logging,
    get_request_id,
    set_request_id,
)


# ─── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _cleanup_request_id():
    """Clear request_id before and after each test."""
    clear_request_id()
    yield
    clear_request_id()


@pytest.fixture
def json_formatter():
    return JSONFormatter()


@pytest.fixture
def dev_formatter():
    return DevFormatter()


@pytest.fixture
def context_filter():
    return ContextFilter()


@pytest.fixture
def root_logger():
    """Root logger, with handlers removed after the test."""
    root = logging.getLogger()
    saved_level = root.level
    yield root
    for h in root.handlers[:]:
        root.removeHandler(h)
    root.setLevel(saved_level)


def _make_record(
    msg: str = "test message",
    level: int = logging.INFO,
    name: str = "test.logger",
    extra: dict | None = None,
) -> logging.LogRecord:
    """Create a LogRecord with optional extra fields."""
    record = logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    if extra:
        for key, value in extra.items():
            setattr(record, key, value)
    return record


# ─── JSONFormatter Tests ──────────────────────────────────────────────


class TestJSONFormatter:
    """Tests for the production JSON log formatter."""

    def test_produces_valid_json(self, json_formatter):
        """JSONFormatter output must be valid JSON."""
        output = json_formatter.format(_make_record("hello world"))
        assert isinstance(json.loads(output), dict)

    def test_includes_required_fields(self, json_formatter):
        """JSON output includes timestamp, level, logger, message."""
        record = _make_record(
            "circuit_opened", level=logging.WARNING, name="clinical_router.llm.circuit_breaker"
        )
        parsed = json.loads(json_formatter.format(record))

        assert "timestamp" in parsed
        assert parsed["level"] == "WARNING"
        assert parsed["logger"] == "clinical_router.llm.circuit_breaker"
        assert parsed["message"] == "circuit_opened"

    def test_includes_extra_fields(self, json_formatter):
        """Extra fields passed via logger.info(..., extra={}) appear in JSON."""
        record = _make_record(
            "llm_routed",
            extra={"provider": "openai", "model": "gpt-4o-mini", "latency_ms": 412.0},
        )
        parsed = json.loads(json_formatter.format(record))

        assert parsed["provider"] == "openai"
        assert parsed["model"] == "gpt-4o-mini"
        assert parsed["latency_ms"] == 412.0

    def test_includes_request_id(self, json_formatter):
        """request_id from ContextFilter is included in JSON output."""
        record = _make_record("test", extra={"request_id": "req-xyz"})
        parsed = json.loads(json_formatter.format(record))
        assert parsed["request_id"] == "req-xyz"

    def test_timestamp_is_iso_format(self, json_formatter):
        """Timestamp should be ISO 8601 format."""
        parsed = json.loads(json_formatter.format(_make_record("test")))
        assert "T" in parsed["timestamp"]

    def test_handles_exception_info(self, json_formatter):
        """Exception info is included in the JSON output."""
        try:
            raise ValueError("test error")
        except ValueError:
            record = _make_record("error occurred")
            record.exc_info = sys.exc_info()

        parsed = json.loads(json_formatter.format(record))

        assert "ValueError" in parsed["exception"]
        assert "test error" in parsed["exception"]

    def test_record_attributes_not_copied(self, json_formatter):
        """Only fields passed through extra join the standard four."""
        record = _make_record("llm_deadline_reached", extra={"attempt": 2})
        parsed = json.loads(json_formatter.format(record))
        assert set(parsed) == {"timestamp", "level", "logger", "message", "attempt"}

    def test_non_serializable_extra_becomes_string(self, json_formatter):
        """Non-JSON-serializable extra values are converted to strings."""
        record = _make_record("test", extra={"complex_obj": object()})
        parsed = json.loads(json_formatter.format(record))
        assert isinstance(parsed["complex_obj"], str)


# ─── DevFormatter Tests ───────────────────────────────────────────────


class TestDevFormatter:
    """Tests for the local development colored formatter."""

    def test_includes_message_level_and_logger(self, dev_formatter):
        """DevFormatter includes message, level and logger name."""
        record = _make_record("hello dev", level=logging.WARNING, name="clinical_router.llm.router")
        output = dev_formatter.format(record)
        assert "hello dev" in output
        assert "WARNING" in output
        assert "clinical_router.llm.router" in output

    def test_includes_extra_fields_inline(self, dev_formatter):
        """DevFormatter shows known extra fields inline as key=value."""
        record = _make_record(
            "test",
            extra={"provider": "gemini", "circuit_breaker": "gemini", "request_id": "req-abc"},
        )
        output = dev_formatter.format(record)
        assert "provider=gemini" in output
        assert "circuit_breaker=gemini" in output
        assert "request_id=req-abc" in output

    def test_unknown_extra_fields_not_inlined(self, dev_formatter):
        """Only the known extra keys are shown."""
        record = _make_record("test", extra={"prompt_hash": "ph_abc"})
        assert "prompt_hash" not in dev_formatter.format(record)

    def test_color_codes_present_for_error(self, dev_formatter):
        """Error level should have red color codes."""
        output = dev_formatter.format(_make_record("error!", level=logging.ERROR))
        assert "\033[31m" in output


# ─── ContextFilter Tests ──────────────────────────────────────────────


class TestContextFilter:
    """Tests for the request_id injection filter."""

    def test_injects_request_id_when_set(self, context_filter):
        """ContextFilter adds request_id to record when set."""
        set_request_id("req-123")
        record = _make_record("test")
        context_filter.filter(record)
        assert record.request_id == "req-123"  # type: ignore[attr-defined]

    def test_no_request_id_when_not_set(self, context_filter):
        """ContextFilter doesn't add request_id when not set."""
        record = _make_record("test")
        context_filter.filter(record)
        assert not hasattr(record, "request_id")

    def test_always_returns_true(self, context_filter):
        """ContextFilter should never suppress log records."""
        assert context_filter.filter(_make_record("test")) is True


# ─── Request Context Helpers ──────────────────────────────────────────


class TestRequestContext:
    """Tests for set_request_id / get_request_id / clear_request_id."""

    def test_set_and_get(self):
        set_request_id("my-request")
        assert get_request_id() == "my-request"

    def test_clear(self):
        set_request_id("to-clear")
        clear_request_id()
        assert get_request_id() is None

    def test_get_returns_none_by_default(self):
        assert get_request_id() is None

    @pytest.mark.asyncio
    async def test_isolated_between_tasks(self):
        """Each asyncio task sees its own request_id."""

        async def tagged(request_id: str) -> str | None:
            set_request_id(request_id)
            await asyncio.sleep(0)
            return get_request_id()

        results = await asyncio.gather(tagged("a"), tagged("b"))
        assert results == ["a", "b"]
        assert get_request_id() is None


# ─── configure_logging Tests ──────────────────────────────────────────


class TestConfigureLogging:
    """Tests for the configure_logging() entry point."""

    def test_production_uses_json_formatter(self, root_logger):
        """In production env, root logger uses JSONFormatter."""
        configure_logging(env="production")
        assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)

    def test_development_uses_dev_formatter(self, root_logger):
        """In development env, root logger uses DevFormatter."""
        configure_logging(env="development")
        assert isinstance(root_logger.handlers[0].formatter, DevFormatter)

    def test_reads_env_var(self, root_logger):
        """configure_logging reads ROUTER_ENV when no arg given."""
        with patch.dict(os.environ, {"ROUTER_ENV": "production"}):
            configure_logging()
        assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)

    def test_defaults_to_development(self, root_logger):
        """Without ROUTER_ENV, defaults to development (DevFormatter)."""
        with patch.dict(os.environ, {}, clear=True):
            configure_logging()
        assert isinstance(root_logger.handlers[0].formatter, DevFormatter)

    def test_removes_existing_handlers(self, root_logger):
        """configure_logging clears previous handlers (no duplicates)."""
        root_logger.addHandler(logging.StreamHandler())
        configure_logging(env="development")
        assert len(root_logger.handlers) == 1

    def test_context_filter_attached(self, root_logger):
        """configure_logging attaches ContextFilter to the handler."""
        configure_logging(env="development")
        filter_types = [type(f) for f in root_logger.handlers[0].filters]
        assert ContextFilter in filter_types

    def test_quiets_http_loggers(self, root_logger):
        """httpx request lines are suppressed below WARNING."""
        configure_logging(env="development")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING
