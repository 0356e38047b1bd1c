"""
Shared fixtures for the LLM routing tests.

Nothing here talks to a real vendor: adapters are exercised through
httpx.MockTransport and the router through scripted fake providers.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Union

import httpx
import pytest

from clinical_router.config.schema import CircuitBreakerSettings, ProviderConfig
from clinical_router.llm.circuit_breaker import CircuitBreakerRegistry
from clinical_router.llm.types import LLMRequest, LLMResponse
from clinical_router.observability.llm_logger import LLMLogger
from clinical_router.observability.telemetry import InMemoryTelemetrySink


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


Script = Union[LLMResponse, Exception, Callable[[LLMRequest], Any]]


class FakeProvider:
    """
    Scripted stand-in for a provider adapter.

    Each call pops the next scripted outcome: an LLMResponse is returned,
    an exception is raised, a callable is awaited/called with the request.
    When the script runs out every call succeeds.
    """

    def __init__(self, name: str, script: Optional[list[Script]] = None, *, healthy: bool = True):
        self.name = name
        self.script = list(script or [])
        self.healthy = healthy
        self.calls: list[LLMRequest] = []
        self.closed = False

    async def _next(self, request: LLMRequest) -> LLMResponse:
        self.calls.append(request)
        if not self.script:
            return ok(self.name, request.model, f"{self.name} says hello")
        outcome = self.script.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, LLMResponse):
            return outcome
        result = outcome(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def send_message(self, request: LLMRequest) -> LLMResponse:
        return await self._next(request)

    async def stream(self, request: LLMRequest, on_token) -> LLMResponse:
        response = await self._next(request)
        if response.success:
            for word in response.content.split(" "):
                on_token(word)
        return response

    async def health_check(self) -> bool:
        return self.healthy

    async def aclose(self) -> None:
        self.closed = True


def ok(provider: str, model: str, content: str = "ok") -> LLMResponse:
    return LLMResponse(success=True, content=content, provider=provider, model=model, latency_ms=5.0)


def fail(provider: str, model: str, error: str = "boom") -> LLMResponse:
    return LLMResponse.failure(provider, model, error, latency_ms=5.0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> InMemoryTelemetrySink:
    return InMemoryTelemetrySink()


@pytest.fixture
def registry(clock, sink) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(
        CircuitBreakerSettings(
            failure_threshold=3, failure_window_seconds=60, reset_timeout_seconds=30
        ),
        sink=sink,
        clock=clock,
    )


@pytest.fixture
def llm_logger() -> LLMLogger:
    return LLMLogger()


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(api_key="test-key")


@pytest.fixture
def request_obj() -> LLMRequest:
    return LLMRequest(system_prompt="You are a scribe.", user_prompt="Summarize the day.")


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """AsyncClient whose every request is answered by `handler`."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
