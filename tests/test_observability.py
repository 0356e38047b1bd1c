"""
Tests for the attempt logger and telemetry sinks.

Covers:
1. hash_prompt: stable, prefixed, non-reversible
2. LLMLogger: bounded buffer, per-provider metrics, log lines
3. Telemetry sinks: in-memory collection and logging forwarder
"""

from __future__ import annotations

import logging

import pytest

from clinical_router.llm.types import TokenUsage
from clinical_router.observability.llm_logger import LLMLogEntry, LLMLogger, hash_prompt
from clinical_router.observability.telemetry import (
    InMemoryTelemetrySink,
    LoggingTelemetrySink,
    TelemetrySink,
)


def _entry(provider="openai", model="gpt-4o-mini", success=True, latency=100.0, **kw) -> LLMLogEntry:
    return LLMLogEntry(
        provider=provider,
        model=model,
        task="general",
        latency_ms=latency,
        success=success,
        **kw,
    )


# ===========================================================================
# hash_prompt
# ===========================================================================


class TestHashPrompt:

    def test_format(self):
        digest = hash_prompt("Patient John Doe, MRN 12345")
        assert digest.startswith("ph_")
        assert len(digest) == 3 + 16
        assert "12345" not in digest

    def test_stable_and_distinct(self):
        assert hash_prompt("a") == hash_prompt("a")
        assert hash_prompt("a") != hash_prompt("b")


# ===========================================================================
# LLMLogger
# ===========================================================================


class TestLLMLogger:

    def test_recent_is_bounded_and_ordered(self):
        llm_logger = LLMLogger(max_entries=3)
        for i in range(5):
            llm_logger.log(_entry(latency=float(i)))

        recent = llm_logger.recent()
        assert [e.latency_ms for e in recent] == [2.0, 3.0, 4.0]
        assert [e.latency_ms for e in llm_logger.recent(2)] == [3.0, 4.0]
        assert llm_logger.recent(0) == []

    def test_metrics_per_model(self):
        llm_logger = LLMLogger()
        llm_logger.log(_entry(latency=100, usage=TokenUsage.from_counts(10, 5)))
        llm_logger.log(_entry(success=False, latency=300, error="OpenAI API error 500: x"))
        llm_logger.log(_entry(model="gpt-4o", latency=200))
        llm_logger.log(_entry(provider="gemini", model="gemini-2.0-flash"))

        m = llm_logger.metrics("openai")["openai:gpt-4o-mini"]
        assert m.total_requests == 2
        assert m.failure_rate == 0.5
        assert m.average_latency_ms == 200.0
        assert m.total_tokens == 15
        assert m.last_error == "OpenAI API error 500: x"
        assert set(llm_logger.metrics()) == {
            "openai:gpt-4o-mini",
            "openai:gpt-4o",
            "gemini:gemini-2.0-flash",
        }

    def test_provider_aggregates(self):
        llm_logger = LLMLogger()
        llm_logger.log(_entry(latency=100))
        llm_logger.log(_entry(model="gpt-4o", success=False, latency=200))
        assert llm_logger.average_latency("openai") == 150.0
        assert llm_logger.failure_rate("openai") == 0.5
        assert llm_logger.average_latency("grok") == 0.0
        assert llm_logger.failure_rate("grok") == 0.0

    def test_reset(self):
        llm_logger = LLMLogger()
        llm_logger.log(_entry())
        llm_logger.reset()
        assert llm_logger.recent() == []
        assert llm_logger.metrics() == {}

    def test_log_lines(self, caplog):
        llm_logger = LLMLogger()
        with caplog.at_level(logging.INFO, logger="clinical_router.observability.llm_logger"):
            llm_logger.log(_entry(prompt_hash="ph_abc"))
            llm_logger.log(_entry(success=False, error="timeout"))
            llm_logger.log(_entry(success=False, cancelled=True, error="stop"))

        messages = [(r.levelname, r.getMessage()) for r in caplog.records]
        assert messages == [
            ("INFO", "llm_attempt_ok"),
            ("WARNING", "llm_attempt_failed"),
            ("INFO", "llm_attempt_cancelled"),
        ]
        assert caplog.records[0].prompt_hash == "ph_abc"

    def test_entry_to_dict(self):
        data = _entry(usage=TokenUsage.from_counts(1, 2)).to_dict()
        assert data["usage"] == {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3}
        assert "timestamp" in data


# ===========================================================================
# Telemetry
# ===========================================================================


class TestTelemetrySinks:

    def test_in_memory_sink(self):
        sink = InMemoryTelemetrySink()
        sink.record_event("api_error", "opened", {"circuit_breaker": "openai"})
        sink.record_event("info", "note")

        assert isinstance(sink, TelemetrySink)
        assert len(sink.events_of("api_error")) == 1
        assert sink.events[1].metadata == {}
        sink.clear()
        assert sink.events == []

    def test_logging_sink(self, caplog):
        sink = LoggingTelemetrySink()
        with caplog.at_level(logging.WARNING, logger="clinical_router.telemetry"):
            sink.record_event(
                "api_error",
                'Circuit breaker "gemini" opened after 5 failures',
                {"circuit_breaker": "gemini", "failure_count": 5},
            )

        record = caplog.records[0]
        assert record.levelno == logging.WARNING
        assert record.event_kind == "api_error"
        assert record.circuit_breaker == "gemini"
        assert record.failure_count == 5

    @pytest.mark.parametrize("sink_cls", [InMemoryTelemetrySink, LoggingTelemetrySink])
    def test_sinks_satisfy_protocol(self, sink_cls):
        assert isinstance(sink_cls(), TelemetrySink)
