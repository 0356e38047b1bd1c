"""Tests for assembling adapters and routers from configuration."""

from __future__ import annotations

import httpx
import pytest

from clinical_router.config.schema import (
    CircuitBreakerSettings,
    ProviderConfig,
    SystemConfig,
)
from clinical_router.exceptions import ConfigurationError
from clinical_router.llm.factory import create_provider, create_router
from clinical_router.llm.providers import AnthropicProvider, GLMProvider
from clinical_router.llm.tokens import CharRatioEstimator
from clinical_router.observability.llm_logger import LLMLogger


class TestCreateProvider:

    def test_known_provider(self, provider_config):
        provider = create_provider("anthropic", provider_config)
        assert isinstance(provider, AnthropicProvider)
        assert provider.base_url == "https://api.anthropic.com/v1"

    def test_unknown_provider(self, provider_config):
        with pytest.raises(ConfigurationError, match="Unknown provider 'mistral'") as exc_info:
            create_provider("mistral", provider_config)
        assert exc_info.value.provider == "mistral"

    def test_passes_client_and_estimator(self, provider_config):
        client = httpx.AsyncClient()
        estimator = CharRatioEstimator(chars_per_token=1)
        provider = create_provider("glm", provider_config, client=client, estimator=estimator)
        assert isinstance(provider, GLMProvider)
        assert provider.client is client
        assert provider.estimate_tokens("abc") == 3


class TestCreateRouter:

    def test_only_credentialed_providers(self):
        config = SystemConfig(
            providers={
                "openai": ProviderConfig(api_key="sk"),
                "gemini": ProviderConfig(api_key="g"),
            }
        )
        router = create_router(config)
        assert router.available_providers() == ["gemini", "openai"]
        assert router.config is config.router

    def test_registry_uses_breaker_settings(self, sink):
        config = SystemConfig(circuit_breaker=CircuitBreakerSettings(failure_threshold=2))
        router = create_router(config, sink=sink)
        assert router.breakers.get("openai").settings.failure_threshold == 2

    @pytest.mark.asyncio
    async def test_built_registry_reports_to_sink(self, sink):
        """The router keeps the freshly built (empty) registry, sink included."""
        config = SystemConfig(circuit_breaker=CircuitBreakerSettings(failure_threshold=2))
        router = create_router(config, sink=sink)
        breaker = router.breakers.get("openai")

        async def down():
            raise RuntimeError("vendor down")

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.execute(down)

        assert breaker.snapshot()["state"] == "OPEN"
        assert len(sink.events_of("api_error")) == 1

    def test_injected_collaborators(self, registry):
        llm_logger = LLMLogger(max_entries=5)
        router = create_router(SystemConfig(), registry=registry, llm_logger=llm_logger)
        assert router.breakers is registry
        assert router.llm_logger is llm_logger
