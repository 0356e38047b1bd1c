"""
Configuration loader for the clinical LLM router.

Loads a SystemConfig either from a YAML file or from environment
variables, validates it against the Pydantic schema, and hands it back.
Nothing here writes configuration anywhere: credentials live in the
external settings store.

YAML layout:

    providers:
      openai:
        api_key: sk-...
      gemini:
        api_key: ...
        base_url: https://generativelanguage.googleapis.com/v1beta
    router:
      default_provider: openai
      default_model: gpt-4o-mini
      max_retries: 2
      rules:
        - task: fast_query
          preferred: {provider: grok, model: grok-2-mini}
          fallbacks:
            - {provider: openai, model: gpt-4o-mini}
    circuit_breaker:
      failure_threshold: 5
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import ValidationError

from clinical_router.config.schema import (
    DEFAULT_ROUTING_RULES,
    ProviderName,
    RouterConfig,
    SystemConfig,
)
from clinical_router.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Environment variable holding each provider's API key
PROVIDER_ENV_KEYS: dict[str, str] = {
    ProviderName.OPENAI.value: "OPENAI_API_KEY",
    ProviderName.ANTHROPIC.value: "ANTHROPIC_API_KEY",
    ProviderName.GEMINI.value: "GEMINI_API_KEY",
    ProviderName.GROK.value: "GROK_API_KEY",
    ProviderName.GLM.value: "GLM_API_KEY",
    ProviderName.HUGGINGFACE.value: "HUGGINGFACE_API_KEY",
}


def load_system_config(config_path: str | Path) -> SystemConfig:
    """
    Load and validate a SystemConfig from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ConfigurationError: If the file is empty or fails validation.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "r") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raise ConfigurationError(f"Config file is empty: {config_path}")
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Config file must contain a mapping, got {type(raw).__name__}: {config_path}"
        )

    # A file without rules keeps the built-in routing table
    router_raw = raw.get("router") or {}
    if "rules" not in router_raw:
        raw["router"] = {**router_raw, "rules": DEFAULT_ROUTING_RULES}

    config = parse_system_config(raw, source=str(config_path))
    logger.info(
        "config_loaded",
        extra={
            "source": str(config_path),
            "providers": sorted(config.providers),
            "rules": len(config.router.rules),
        },
    )
    return config


def parse_system_config(raw: Mapping[str, Any], source: str = "<dict>") -> SystemConfig:
    """Validate a raw mapping, converting pydantic errors to ConfigurationError."""
    try:
        return SystemConfig(**raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid router config ({source}):\n{e}",
            details={"errors": e.errors(include_url=False)},
        ) from e


def build_config_from_env(environ: Optional[Mapping[str, str]] = None) -> SystemConfig:
    """
    Build a SystemConfig from environment variables.

    Reads <PROVIDER>_API_KEY and <PROVIDER>_BASE_URL for every known
    provider, OPENAI_ORGANIZATION, and the DEFAULT_/FALLBACK_LLM_PROVIDER
    and _MODEL overrides. Providers without a key are simply absent.
    """
    env = os.environ if environ is None else environ

    providers: dict[str, dict[str, Any]] = {}
    for provider, key_var in PROVIDER_ENV_KEYS.items():
        api_key = env.get(key_var, "").strip()
        if not api_key:
            continue
        entry: dict[str, Any] = {"api_key": api_key}
        base_url = env.get(f"{provider.upper()}_BASE_URL", "").strip()
        if base_url:
            entry["base_url"] = base_url
        providers[provider] = entry

    org = env.get("OPENAI_ORGANIZATION", "").strip()
    if org and "openai" in providers:
        providers["openai"]["organization_id"] = org

    defaults = RouterConfig()
    router = {
        "default_provider": env.get("DEFAULT_LLM_PROVIDER") or defaults.default_provider,
        "default_model": env.get("DEFAULT_LLM_MODEL") or defaults.default_model,
        "fallback_provider": env.get("FALLBACK_LLM_PROVIDER") or defaults.fallback_provider,
        "fallback_model": env.get("FALLBACK_LLM_MODEL") or defaults.fallback_model,
        "rules": DEFAULT_ROUTING_RULES,
    }

    return parse_system_config(
        {"providers": providers, "router": router},
        source="environment",
    )


def providers_with_credentials(config: SystemConfig) -> list[str]:
    """Names of providers that have a usable API key, for display only."""
    return sorted(name for name, cfg in config.providers.items() if cfg.api_key)

