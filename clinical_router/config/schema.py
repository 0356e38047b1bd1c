"""
Pydantic configuration schema for the clinical LLM router.

Credentials and routing rules are supplied by an external settings store
(YAML file, environment, secrets manager). The router only reads these
models; they are frozen so a routing decision always sees one consistent
snapshot, and a config change replaces the whole object.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ProviderName(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    GROK = "grok"
    GLM = "glm"
    HUGGINGFACE = "huggingface"


class TaskCategory(str, Enum):
    """Categories of work that route to different models."""

    CLINICAL_NOTE = "clinical_note"   # Progress notes, summaries
    REASONING = "reasoning"           # Differential, plan critique
    FAST_QUERY = "fast_query"         # Short lookups, autocomplete
    LOW_COST = "low_cost"             # Bulk / background work
    OFFLINE = "offline"               # Self-hosted or local models
    TRANSCRIPTION = "transcription"   # Speech-to-text handoff
    GENERAL = "general"               # Default / unspecified


# ---------------------------------------------------------------------------
# Provider credentials
# ---------------------------------------------------------------------------

class ProviderConfig(BaseModel):
    """Credentials and endpoint overrides for one backend vendor."""

    model_config = ConfigDict(frozen=True)

    api_key: str = Field(..., repr=False)
    base_url: Optional[str] = None
    organization_id: Optional[str] = None
    default_model: Optional[str] = None
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("api_key")
    @classmethod
    def api_key_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("api_key must not be empty")
        return v.strip()

    @field_validator("base_url")
    @classmethod
    def base_url_is_http(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got '{v}'")
        return v.rstrip("/")


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

class ModelTarget(BaseModel):
    """A (provider, model) pair the router can try."""

    model_config = ConfigDict(frozen=True)

    provider: str
    model: str

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.model}"

    @property
    def display_name(self) -> str:
        return f"{self.provider}/{self.model}"


class RoutingRule(BaseModel):
    """Task category -> preferred model + ordered fallbacks."""

    model_config = ConfigDict(frozen=True)

    task: str
    preferred: ModelTarget
    fallbacks: tuple[ModelTarget, ...] = ()
    description: str = ""

    @field_validator("task", mode="before")
    @classmethod
    def task_value(cls, v: object) -> object:
        if isinstance(v, TaskCategory):
            return v.value
        return v


class CircuitBreakerSettings(BaseModel):
    """Thresholds shared by every breaker in a registry."""

    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(5, ge=1)
    failure_window_seconds: float = Field(60.0, gt=0)
    reset_timeout_seconds: float = Field(30.0, gt=0)


class RouterConfig(BaseModel):
    """
    Routing table plus retry/timeout knobs.

    max_retries is a budget shared by the whole candidate chain: the router
    makes at most max_retries + 1 network attempts per request, whichever
    candidates they land on.
    """

    model_config = ConfigDict(frozen=True)

    default_provider: str = ProviderName.OPENAI.value
    default_model: str = "gpt-4o-mini"
    fallback_provider: str = ProviderName.GEMINI.value
    fallback_model: str = "gemini-2.0-flash"
    rules: tuple[RoutingRule, ...] = ()
    max_retries: int = Field(2, ge=0)
    retry_delay_seconds: float = Field(1.0, ge=0)
    timeout_seconds: float = Field(30.0, gt=0)

    @model_validator(mode="after")
    def unique_tasks(self) -> "RouterConfig":
        seen: set[str] = set()
        for rule in self.rules:
            if rule.task in seen:
                raise ValueError(f"Duplicate routing rule for task '{rule.task}'")
            seen.add(rule.task)
        return self

    @property
    def default_target(self) -> ModelTarget:
        return ModelTarget(provider=self.default_provider, model=self.default_model)

    @property
    def fallback_target(self) -> ModelTarget:
        return ModelTarget(provider=self.fallback_provider, model=self.fallback_model)

    def get_rule(self, task: str | TaskCategory) -> Optional[RoutingRule]:
        """Get the routing rule for a task, or None if the task has no rule."""
        task_str = task.value if isinstance(task, TaskCategory) else task
        for rule in self.rules:
            if rule.task == task_str:
                return rule
        return None

    def list_routes(self) -> list[dict[str, object]]:
        """Return a summary of all configured routes."""
        return [
            {
                "task": rule.task,
                "preferred": rule.preferred.display_name,
                "fallbacks": [fb.display_name for fb in rule.fallbacks],
                "description": rule.description,
            }
            for rule in self.rules
        ]


class SystemConfig(BaseModel):
    """Everything needed to assemble a router for one session."""

    model_config = ConfigDict(frozen=True)

    providers: dict[str, ProviderConfig] = Field(default_factory=dict)
    router: RouterConfig = Field(default_factory=lambda: DEFAULT_ROUTER_CONFIG)
    circuit_breaker: CircuitBreakerSettings = Field(
        default_factory=CircuitBreakerSettings
    )
    logging: bool = True

    @field_validator("providers")
    @classmethod
    def known_providers(cls, v: dict[str, ProviderConfig]) -> dict[str, ProviderConfig]:
        known = {p.value for p in ProviderName}
        unknown = sorted(set(v) - known)
        if unknown:
            raise ValueError(
                f"Unknown provider(s): {unknown}. Available: {sorted(known)}"
            )
        return v


# ---------------------------------------------------------------------------
# Default Routing Table
# ---------------------------------------------------------------------------

def _target(provider: ProviderName, model: str) -> ModelTarget:
    return ModelTarget(provider=provider.value, model=model)


DEFAULT_ROUTING_RULES: tuple[RoutingRule, ...] = (
    RoutingRule(
        task=TaskCategory.CLINICAL_NOTE,
        preferred=_target(ProviderName.ANTHROPIC, "claude-sonnet-4-20250514"),
        fallbacks=(
            _target(ProviderName.OPENAI, "gpt-4o"),
            _target(ProviderName.GEMINI, "gemini-2.5-flash"),
        ),
        description="Clinical documentation: notes, summaries, handoffs",
    ),
    RoutingRule(
        task=TaskCategory.REASONING,
        preferred=_target(ProviderName.OPENAI, "gpt-4o"),
        fallbacks=(
            _target(ProviderName.ANTHROPIC, "claude-sonnet-4-20250514"),
            _target(ProviderName.GEMINI, "gemini-2.5-pro"),
        ),
        description="Differential diagnosis and plan reasoning",
    ),
    RoutingRule(
        task=TaskCategory.FAST_QUERY,
        preferred=_target(ProviderName.GROK, "grok-2-mini"),
        fallbacks=(
            _target(ProviderName.OPENAI, "gpt-4o-mini"),
            _target(ProviderName.GEMINI, "gemini-2.0-flash"),
        ),
        description="Short, latency-sensitive lookups",
    ),
    RoutingRule(
        task=TaskCategory.LOW_COST,
        preferred=_target(ProviderName.GLM, "glm-4-flash"),
        fallbacks=(
            _target(ProviderName.OPENAI, "gpt-4o-mini"),
            _target(ProviderName.HUGGINGFACE, "meta-llama/Meta-Llama-3.1-8B-Instruct"),
        ),
        description="Bulk background work on the cheapest models",
    ),
    RoutingRule(
        task=TaskCategory.OFFLINE,
        preferred=_target(ProviderName.HUGGINGFACE, "meta-llama/Meta-Llama-3.1-8B-Instruct"),
        fallbacks=(_target(ProviderName.GLM, "glm-4-flash"),),
        description="Open-weight models, self-hosted via base_url overrides",
    ),
    RoutingRule(
        task=TaskCategory.GENERAL,
        preferred=_target(ProviderName.OPENAI, "gpt-4o-mini"),
        fallbacks=(
            _target(ProviderName.ANTHROPIC, "claude-3-5-haiku-20241022"),
            _target(ProviderName.GEMINI, "gemini-2.0-flash"),
            _target(ProviderName.GROK, "grok-2-mini"),
        ),
        description="Default: general-purpose assistant",
    ),
)

DEFAULT_ROUTER_CONFIG = RouterConfig(rules=DEFAULT_ROUTING_RULES)
