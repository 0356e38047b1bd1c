"""
Custom exception hierarchy for the clinical LLM router.

Structured error handling with clear categories:
- Configuration errors (raised at construction time only)
- Provider errors (vendor API / transport failures)
- Circuit breaker rejections (fast-fail, no network call attempted)
- Cancellation (distinct from failure, never retried)
- Caller callback errors (a streaming on_token that raised)

Only ConfigurationError and TokenCallbackError ever reach a caller of
LLMRouter. Everything else is normalized into an LLMResponse with
success=False at the router boundary.

Usage:
    from clinical_router.exceptions import CircuitOpenError, ProviderError

    try:
        response = await breaker.execute(call_provider)
    except CircuitOpenError as err:
        logger.info("skipping %s for %.1fs", err.service, err.remaining_seconds)
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from clinical_router.llm.types import LLMResponse


class RouterError(Exception):
    """
    Base exception for all router errors.

    All custom exceptions inherit from this, so you can catch
    `RouterError` to handle any routing-layer error.
    """

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


# ── Configuration Errors ──────────────────────────────────────────


class ConfigurationError(RouterError):
    """
    Raised when provider credentials or routing configuration are invalid.

    Examples:
    - Empty API key for a configured provider
    - Unknown provider name in a routing rule
    - Two routing rules for the same task
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
        self.provider = provider
        self.field = field


# ── Provider Errors ───────────────────────────────────────────────


class ProviderError(RouterError):
    """
    A provider call that did not produce a usable response.

    Raised inside the circuit breaker's wrapped operation so the breaker
    counts the failure. The router catches it and moves to the next
    candidate; it never escapes the router.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        status_code: Optional[int] = None,
        response: Optional[LLMResponse] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.response = response


# ── Circuit Breaker ───────────────────────────────────────────────


class CircuitOpenError(RouterError):
    """
    Raised when a call is rejected because the service's circuit is open.

    The wrapped operation was never invoked.
    """

    def __init__(self, service: str, remaining_seconds: float = 0.0):
        super().__init__(
            f'Circuit breaker "{service}" is open. '
            f"Retry in {math.ceil(remaining_seconds)}s.",
            details={"service": service, "remaining_seconds": remaining_seconds},
        )
        self.service = service
        self.remaining_seconds = remaining_seconds


# ── Cancellation ──────────────────────────────────────────────────


class RequestCancelledError(RouterError):
    """
    Raised when the caller's cancellation token fires.

    This is NOT a failure: circuit breakers ignore it and the router does
    not retry it.
    """

    def __init__(self, reason: str = "Request cancelled"):
        super().__init__(reason)
        self.reason = reason


# ── Caller Callbacks ──────────────────────────────────────────────


class TokenCallbackError(RouterError):
    """
    Raised when the caller's streaming on_token callback raises.

    The original exception is chained as __cause__. This is a caller bug,
    not a provider failure: breakers do not record it and the router
    re-raises it instead of falling back.
    """

    def __init__(self, provider: str, cause: BaseException):
        super().__init__(
            f"on_token callback raised {type(cause).__name__}: {cause}",
            details={"provider": provider},
        )
        self.provider = provider
