"""
LLM Router: task-based routing with fallback, retries and circuit breakers.

Every LLM call in the application goes through LLMRouter. For each
request it:

1. Builds the candidate chain for the task category:
   [rule.preferred, *rule.fallbacks, global default, global fallback],
   de-duplicated by provider:model (first occurrence wins). An explicit
   target is tried first; allow_fallback=False pins to that target.
2. Walks the chain. Each candidate gets its prompt compiled for its
   provider and is called through that provider's circuit breaker.
3. Validates each successful response (see output_validator). Invalid
   output counts as a failed attempt; repaired output replaces the
   content.
4. Returns the first successful, valid response.

Retry budget: at most max_retries + 1 network attempts per request,
shared across the whole chain. Attempt n (n >= 2) is preceded by a wait
of retry_delay_seconds * 2**(n-2), i.e. 1x, 2x, 4x the base delay.
Candidates whose provider is not registered, or whose circuit is open,
are skipped without spending budget or waiting. timeout_seconds bounds
the whole request, delays included; each attempt only gets whatever time
is left. When a wait would pass the deadline the router stops and
reports the last provider error it saw.

The router never raises for provider failures. When nothing succeeds it
returns LLMResponse.failure("All providers failed. Last error: ...").
Cancellation via the request's CancellationToken returns a failure with
cancelled=True, is never retried and never counts against a breaker. A
streaming on_token callback that raises propagates as TokenCallbackError.

Usage:
    from clinical_router.llm.factory import create_router

    router = create_router(load_system_config("config/router.yaml"))
    response = await router.route(
        LLMRequest(system_prompt="You are a clinical scribe.", user_prompt="..."),
        task=TaskCategory.CLINICAL_NOTE,
    )
    if response.success:
        print(response.content)
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import replace
from typing import Awaitable, Callable, Mapping, Optional, Sequence

from clinical_router.config.schema import (
    DEFAULT_ROUTER_CONFIG,
    ModelTarget,
    RouterConfig,
    TaskCategory,
)
from clinical_router.exceptions import (
    CircuitOpenError,
    ProviderError,
    RequestCancelledError,
    TokenCallbackError,
)
from clinical_router.llm.cancellation import cancellable_sleep
from clinical_router.llm.circuit_breaker import CircuitBreakerRegistry
from clinical_router.llm.output_validator import validate_output
from clinical_router.llm.prompt_compiler import compile_prompt
from clinical_router.llm.providers.base import BaseProvider, TokenCallback
from clinical_router.llm.types import LLMRequest, LLMResponse
from clinical_router.observability.llm_logger import LLMLogEntry, LLMLogger, hash_prompt

logger = logging.getLogger(__name__)

Invoke = Callable[[BaseProvider, LLMRequest], Awaitable[LLMResponse]]


def _task_value(task: str | TaskCategory) -> str:
    return task.value if isinstance(task, TaskCategory) else task


def build_candidate_chain(
    config: RouterConfig,
    task: str | TaskCategory,
    *,
    target: Optional[ModelTarget] = None,
    allow_fallback: bool = True,
) -> list[ModelTarget]:
    """Ordered, de-duplicated (provider, model) pairs to try for a task."""
    if target is not None and not allow_fallback:
        return [target]

    ordered: list[ModelTarget] = []
    if target is not None:
        ordered.append(target)

    rule = config.get_rule(task)
    if rule is not None:
        ordered.append(rule.preferred)
        ordered.extend(rule.fallbacks)

    ordered.append(config.default_target)
    ordered.append(config.fallback_target)

    seen: set[str] = set()
    chain: list[ModelTarget] = []
    for candidate in ordered:
        if candidate.key in seen:
            continue
        seen.add(candidate.key)
        chain.append(candidate)
    return chain


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class LLMRouter:
    """
    Routes requests across registered provider adapters.

    Collaborators are injected: adapters by provider name, the breaker
    registry (one breaker per provider), and the attempt logger. The
    routing config is a frozen snapshot; update_config() swaps it and
    in-flight requests keep the snapshot they started with.
    """

    def __init__(
        self,
        config: Optional[RouterConfig] = None,
        *,
        providers: Optional[Mapping[str, BaseProvider]] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        llm_logger: Optional[LLMLogger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config if config is not None else DEFAULT_ROUTER_CONFIG
        self._providers: dict[str, BaseProvider] = dict(providers or {})
        # An empty registry is falsy; test for None explicitly
        self._breakers = breakers if breakers is not None else CircuitBreakerRegistry()
        self._llm_logger = llm_logger if llm_logger is not None else LLMLogger()
        self._clock = clock

    @property
    def config(self) -> RouterConfig:
        return self._config

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def llm_logger(self) -> LLMLogger:
        return self._llm_logger

    def get_provider(self, name: str) -> Optional[BaseProvider]:
        return self._providers.get(name)

    def register_provider(self, provider: BaseProvider) -> None:
        self._providers[provider.name] = provider
        logger.info("provider_registered", extra={"provider": provider.name})

    def update_config(self, config: RouterConfig) -> None:
        """Replace the routing config wholesale."""
        self._config = config
        logger.info(
            "router_config_updated",
            extra={
                "rules": len(config.rules),
                "max_retries": config.max_retries,
                "timeout_seconds": config.timeout_seconds,
            },
        )

    def available_providers(self) -> list[str]:
        """Names of registered adapters, for display only."""
        return sorted(self._providers)

    def candidate_chain(
        self,
        task: str | TaskCategory = TaskCategory.GENERAL,
        *,
        target: Optional[ModelTarget] = None,
        allow_fallback: bool = True,
    ) -> list[ModelTarget]:
        return build_candidate_chain(
            self._config, task, target=target, allow_fallback=allow_fallback
        )

    # --- Main Routing API ---

    async def route(
        self,
        request: LLMRequest,
        task: str | TaskCategory = TaskCategory.GENERAL,
        *,
        target: Optional[ModelTarget] = None,
        allow_fallback: bool = True,
        feature: Optional[str] = None,
        skip_validation: bool = False,
    ) -> LLMResponse:
        """
        Send a request down the candidate chain and return the first success.

        Args:
            request: The canonical request. Never mutated.
            task: Task category selecting the routing rule.
            target: Explicit provider/model to try first.
            allow_fallback: False pins the request to `target` only.
            feature: Calling feature name, recorded in the attempt log and
                     used to pick the output checks.
            skip_validation: Return the first success without output checks.
        """
        return await self._run_chain(
            request,
            task,
            self._send,
            target=target,
            allow_fallback=allow_fallback,
            feature=feature,
            skip_validation=skip_validation,
        )

    async def route_stream(
        self,
        request: LLMRequest,
        on_token: TokenCallback,
        task: str | TaskCategory = TaskCategory.GENERAL,
        *,
        target: Optional[ModelTarget] = None,
        allow_fallback: bool = True,
        feature: Optional[str] = None,
        skip_validation: bool = False,
    ) -> LLMResponse:
        """
        Streaming twin of route(): same chain, budget and breakers.

        Fragments are pushed to on_token as they arrive. A candidate that
        fails mid-stream may already have delivered some fragments before
        the next candidate starts.
        """
        invoke: Invoke = functools.partial(_stream_with, on_token=on_token)
        return await self._run_chain(
            request,
            task,
            invoke,
            target=target,
            allow_fallback=allow_fallback,
            feature=feature,
            skip_validation=skip_validation,
        )

    async def route_multiple(
        self,
        request: LLMRequest,
        targets: Sequence[ModelTarget],
        task: str | TaskCategory = TaskCategory.GENERAL,
        *,
        feature: Optional[str] = None,
    ) -> list[LLMResponse]:
        """Run the same request against each target concurrently, no fallback."""
        return list(
            await asyncio.gather(
                *(
                    self.route(
                        request,
                        task,
                        target=t,
                        allow_fallback=False,
                        feature=feature,
                    )
                    for t in targets
                )
            )
        )

    async def health_check_all(self) -> dict[str, bool]:
        names = list(self._providers)
        results = await asyncio.gather(
            *(self._providers[name].health_check() for name in names),
            return_exceptions=True,
        )
        health: dict[str, bool] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "provider_health_check_failed",
                    extra={"provider": name, "error": str(result)[:200]},
                )
                health[name] = False
            else:
                health[name] = bool(result)
        return health

    async def aclose(self) -> None:
        """Close every adapter's owned HTTP client."""
        await asyncio.gather(*(p.aclose() for p in self._providers.values()))

    # --- Chain Execution ---

    async def _run_chain(
        self,
        request: LLMRequest,
        task: str | TaskCategory,
        invoke: Invoke,
        *,
        target: Optional[ModelTarget],
        allow_fallback: bool,
        feature: Optional[str],
        skip_validation: bool,
    ) -> LLMResponse:
        config = self._config
        task_str = _task_value(task)
        chain = build_candidate_chain(
            config, task_str, target=target, allow_fallback=allow_fallback
        )
        token = request.cancel_token
        prompt_hash = hash_prompt(request.system_prompt + request.user_prompt)

        start = self._clock()
        deadline = start + config.timeout_seconds
        budget = config.max_retries + 1
        attempts = 0
        last_error: Optional[str] = None

        for candidate in chain:
            if token is not None and token.cancelled:
                return self._cancelled(candidate, token.reason, start)
            if attempts >= budget:
                break

            provider = self._providers.get(candidate.provider)
            if provider is None:
                last_error = f"Provider '{candidate.provider}' is not configured"
                logger.warning(
                    "llm_provider_not_configured",
                    extra={"task": task_str, "provider": candidate.provider},
                )
                continue

            breaker = self._breakers.get(candidate.provider)

            if attempts > 0 and breaker.peek_ready():
                delay = config.retry_delay_seconds * 2 ** (attempts - 1)
                if self._clock() + delay >= deadline:
                    self._deadline_reached(config, task_str, attempts)
                    last_error = last_error or _timeout_message(config)
                    break
                try:
                    await cancellable_sleep(delay, token)
                except RequestCancelledError as e:
                    return self._cancelled(candidate, e.reason, start)

            remaining = deadline - self._clock()
            if remaining <= 0:
                self._deadline_reached(config, task_str, attempts)
                last_error = last_error or _timeout_message(config)
                break

            compiled = compile_prompt(request, candidate.provider)
            attempt_request = replace(
                request,
                model=candidate.model,
                system_prompt=compiled.system_prompt,
                user_prompt=compiled.user_prompt,
            )

            try:
                response = await breaker.execute(
                    functools.partial(
                        self._attempt, invoke, provider, attempt_request, remaining
                    )
                )
            except CircuitOpenError as e:
                last_error = str(e)
                logger.info(
                    "llm_circuit_open_skip",
                    extra={
                        "task": task_str,
                        "provider": candidate.provider,
                        "model": candidate.model,
                        "circuit_breaker": e.service,
                    },
                )
                continue
            except RequestCancelledError as e:
                cancelled = self._cancelled(candidate, e.reason, start)
                self._record(cancelled, task_str, feature, prompt_hash)
                return cancelled
            except TokenCallbackError:
                raise
            except ProviderError as e:
                attempts += 1
                failed = e.response or LLMResponse.failure(
                    candidate.provider, candidate.model, str(e)
                )
                self._record(failed, task_str, feature, prompt_hash)
                last_error = failed.error
                continue
            except Exception as e:
                attempts += 1
                failed = LLMResponse.failure(
                    candidate.provider, candidate.model, str(e) or type(e).__name__
                )
                logger.exception(
                    "llm_adapter_raised",
                    extra={"provider": candidate.provider, "model": candidate.model},
                )
                self._record(failed, task_str, feature, prompt_hash)
                last_error = failed.error
                continue

            attempts += 1
            if not skip_validation:
                checked = self._check_output(attempt_request, response, feature)
                if not checked.success:
                    self._record(checked, task_str, feature, prompt_hash)
                    last_error = checked.error
                    continue
                response = checked

            self._record(response, task_str, feature, prompt_hash)
            logger.info(
                "llm_routed",
                extra={
                    "task": task_str,
                    "provider": candidate.provider,
                    "model": candidate.model,
                    "attempt": attempts,
                    "latency_ms": round(response.latency_ms, 1),
                },
            )
            return response

        first = chain[0] if chain else config.default_target
        logger.error(
            "llm_all_providers_failed",
            extra={"task": task_str, "attempt": attempts, "error": (last_error or "")[:200]},
        )
        return LLMResponse.failure(
            first.provider,
            first.model,
            f"All providers failed. Last error: {last_error or 'unknown'}",
            latency_ms=(self._clock() - start) * 1000,
        )

    async def _attempt(
        self,
        invoke: Invoke,
        provider: BaseProvider,
        request: LLMRequest,
        timeout: float,
    ) -> LLMResponse:
        """One network attempt; raises so the breaker sees failures."""
        try:
            response = await asyncio.wait_for(invoke(provider, request), timeout=timeout)
        except asyncio.TimeoutError:
            message = f"Request timed out after {timeout:.1f}s"
            raise ProviderError(
                message,
                provider=provider.name,
                model=request.model,
                response=LLMResponse.failure(
                    provider.name, request.model, message, latency_ms=timeout * 1000
                ),
            ) from None

        if response.cancelled:
            raise RequestCancelledError(response.error or "Request cancelled")
        if not response.success:
            raise ProviderError(
                response.error or f"{provider.name} returned no content",
                provider=provider.name,
                model=request.model,
                response=response,
            )
        return response

    @staticmethod
    async def _send(provider: BaseProvider, request: LLMRequest) -> LLMResponse:
        return await provider.send_message(request)

    @staticmethod
    def _check_output(
        request: LLMRequest, response: LLMResponse, feature: Optional[str]
    ) -> LLMResponse:
        """Validated (possibly repaired) response, or a failure in its place."""
        result = validate_output(request, response.content, feature)
        if result is None:
            return response

        fields = {
            "provider": response.provider,
            "model": response.model,
            "feature": feature,
        }
        if not result.valid:
            logger.warning(
                "llm_output_invalid",
                extra={**fields, "error": result.error_summary[:200]},
            )
            return LLMResponse.failure(
                response.provider,
                response.model,
                f"Validation failed: {result.error_summary}",
                latency_ms=response.latency_ms,
            )

        if result.warnings:
            logger.info(
                "llm_output_warnings",
                extra={**fields, "warnings": list(result.warnings)},
            )
        if result.repaired:
            return replace(response, content=result.content)
        return response

    def _deadline_reached(self, config: RouterConfig, task: str, attempts: int) -> None:
        logger.warning(
            "llm_deadline_reached",
            extra={
                "task": task,
                "attempt": attempts,
                "timeout_seconds": config.timeout_seconds,
            },
        )

    def _cancelled(
        self, candidate: ModelTarget, reason: Optional[str], start: float
    ) -> LLMResponse:
        logger.info(
            "llm_request_cancelled",
            extra={"provider": candidate.provider, "model": candidate.model},
        )
        return LLMResponse.failure(
            candidate.provider,
            candidate.model,
            reason or "Request cancelled",
            latency_ms=(self._clock() - start) * 1000,
            cancelled=True,
        )

    def _record(
        self,
        response: LLMResponse,
        task: str,
        feature: Optional[str],
        prompt_hash: str,
    ) -> None:
        self._llm_logger.log(
            LLMLogEntry(
                provider=response.provider,
                model=response.model,
                task=task,
                latency_ms=response.latency_ms,
                success=response.success,
                error=response.error,
                usage=response.usage,
                feature=feature,
                prompt_hash=prompt_hash,
                cancelled=response.cancelled,
            )
        )


async def _stream_with(
    provider: BaseProvider, request: LLMRequest, *, on_token: TokenCallback
) -> LLMResponse:
    return await provider.stream(request, on_token)


def _timeout_message(config: RouterConfig) -> str:
    return f"Request timed out after {config.timeout_seconds:g}s"
