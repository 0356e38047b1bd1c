"""
Observability sink for routing-layer events.

A sink receives structured `(kind, message, metadata)` events. The router
emits one `api_error` event each time a circuit breaker opens; anything
else that wants a durable trail can reuse the same interface.

Two implementations ship here:
- LoggingTelemetrySink: forwards events to the stdlib logger (default)
- InMemoryTelemetrySink: collects events in a list (tests, CLI summaries)

Usage:
    from clinical_router.observability.telemetry import InMemoryTelemetrySink

    sink = InMemoryTelemetrySink()
    registry = CircuitBreakerRegistry(sink=sink)
    ...
    assert sink.events_of("api_error")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class TelemetrySink(Protocol):
    """Anything that can record a structured observability event."""

    def record_event(
        self,
        kind: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        ...


@dataclass
class TelemetryEvent:
    """One recorded event."""

    kind: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class LoggingTelemetrySink:
    """Writes every event to the logger as a WARNING with its metadata."""

    def __init__(self, logger_name: str = "clinical_router.telemetry"):
        self._logger = logging.getLogger(logger_name)

    def record_event(
        self,
        kind: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        self._logger.warning(
            message,
            extra={"event_kind": kind, **(metadata or {})},
        )


class InMemoryTelemetrySink:
    """Keeps events in memory, oldest first."""

    def __init__(self) -> None:
        self.events: list[TelemetryEvent] = []

    def record_event(
        self,
        kind: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        self.events.append(
            TelemetryEvent(kind=kind, message=message, metadata=dict(metadata or {}))
        )

    def events_of(self, kind: str) -> list[TelemetryEvent]:
        return [e for e in self.events if e.kind == kind]

    def clear(self) -> None:
        self.events.clear()
