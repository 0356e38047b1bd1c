"""
Uniform request/response contract shared by every provider adapter.

Callers build an LLMRequest and get an LLMResponse back, whichever vendor
actually served it. Responses are always fully populated: failures go
through LLMResponse.failure() so content, latency and error are never
missing.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from clinical_router.config.schema import TaskCategory

if TYPE_CHECKING:
    from clinical_router.llm.cancellation import CancellationToken

__all__ = [
    "LLMRequest",
    "LLMResponse",
    "ResponseFormat",
    "TaskCategory",
    "TokenUsage",
]


class ResponseFormat(str, Enum):
    JSON = "json"
    MARKDOWN = "markdown"
    NOTE = "note"
    TEXT = "text"


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(cls, prompt: int, completion: int) -> TokenUsage:
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
        )


@dataclass
class LLMRequest:
    """
    One generation request.

    `model` may be empty: the router fills it in per candidate. The
    router copies the request for each candidate, so the caller's object
    is never mutated.
    """

    system_prompt: str
    user_prompt: str
    model: str = ""
    context: Optional[dict[str, Any]] = None
    response_format: ResponseFormat = ResponseFormat.TEXT
    temperature: float = 0.3
    max_tokens: int = 4000
    cancel_token: Optional[CancellationToken] = field(
        default=None, repr=False, compare=False
    )

    @property
    def wants_json(self) -> bool:
        return self.response_format == ResponseFormat.JSON


@dataclass
class LLMResponse:
    """Unified response from any provider."""

    success: bool
    content: str
    provider: str
    model: str
    latency_ms: float = 0.0
    usage: Optional[TokenUsage] = None
    error: Optional[str] = None
    cancelled: bool = False

    @classmethod
    def failure(
        cls,
        provider: str,
        model: str,
        error: str,
        *,
        latency_ms: float = 0.0,
        cancelled: bool = False,
    ) -> LLMResponse:
        return cls(
            success=False,
            content="",
            provider=provider,
            model=model,
            latency_ms=latency_ms,
            error=error,
            cancelled=cancelled,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
