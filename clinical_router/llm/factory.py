"""
Assemble adapters, breakers and a router from a SystemConfig.

Only providers with credentials get an adapter. A routing rule that
names a provider without credentials is still valid: the router skips
that candidate at request time.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from clinical_router.config.schema import ProviderConfig, SystemConfig
from clinical_router.exceptions import ConfigurationError
from clinical_router.llm.circuit_breaker import CircuitBreakerRegistry
from clinical_router.llm.providers import PROVIDER_CLASSES, BaseProvider
from clinical_router.llm.router import LLMRouter
from clinical_router.llm.tokens import TokenEstimator
from clinical_router.observability.llm_logger import LLMLogger
from clinical_router.observability.telemetry import LoggingTelemetrySink, TelemetrySink

logger = logging.getLogger(__name__)


def create_provider(
    name: str,
    config: ProviderConfig,
    *,
    client: Optional[httpx.AsyncClient] = None,
    estimator: Optional[TokenEstimator] = None,
) -> BaseProvider:
    """Instantiate the adapter for a provider name."""
    try:
        provider_cls = PROVIDER_CLASSES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown provider '{name}'. Available: {sorted(PROVIDER_CLASSES)}",
            provider=name,
        ) from None
    return provider_cls(config, client=client, estimator=estimator)


def create_router(
    system_config: SystemConfig,
    *,
    sink: Optional[TelemetrySink] = None,
    registry: Optional[CircuitBreakerRegistry] = None,
    llm_logger: Optional[LLMLogger] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> LLMRouter:
    """
    Build an LLMRouter with one adapter per credentialed provider.

    Args:
        system_config: Validated configuration snapshot.
        sink: Telemetry sink for circuit-open events (defaults to logging).
        registry: Breaker registry; a new one is built from
                  system_config.circuit_breaker when omitted.
        llm_logger: Attempt log; a fresh one when omitted.
        client: Shared httpx client for every adapter (not closed by
                router.aclose()).
    """
    if registry is None:
        registry = CircuitBreakerRegistry(
            system_config.circuit_breaker,
            sink=sink or LoggingTelemetrySink(),
        )

    providers = {
        name: create_provider(name, cfg, client=client)
        for name, cfg in system_config.providers.items()
    }

    logger.info(
        "router_created",
        extra={
            "providers": sorted(providers),
            "rules": len(system_config.router.rules),
        },
    )
    return LLMRouter(
        system_config.router,
        providers=providers,
        breakers=registry,
        llm_logger=llm_logger,
    )
