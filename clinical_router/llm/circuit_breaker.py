"""
Circuit breaker: stops hammering a backend that keeps failing.

States:
- CLOSED: calls pass through; failures are counted inside a sliding window
- OPEN: calls are rejected immediately with CircuitOpenError
- HALF_OPEN: one probe call is let through to test recovery

Transitions:
- CLOSED -> OPEN: failures within the window reach the threshold
- OPEN -> HALF_OPEN: the reset timeout has elapsed (checked on admission)
- HALF_OPEN -> CLOSED: the probe succeeds (failure history cleared)
- HALF_OPEN -> OPEN: the probe fails

Cancellation is not a failure. A cancelled call is never recorded, and a
cancelled probe frees the probe slot for the next caller.
A TokenCallbackError (the caller's own callback raised) is not recorded
either.

Every transition into OPEN sends one `api_error` event to the telemetry
sink. All state changes happen in synchronous methods, so nothing
interleaves between a check and the update that follows it.

Usage:
    registry = CircuitBreakerRegistry(CircuitBreakerSettings(failure_threshold=3))
    breaker = registry.get("openai")
    try:
        response = await breaker.execute(lambda: call_openai(request))
    except CircuitOpenError as err:
        ...
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from clinical_router.config.schema import CircuitBreakerSettings
from clinical_router.exceptions import (
    CircuitOpenError,
    RequestCancelledError,
    TokenCallbackError,
)
from clinical_router.observability.telemetry import TelemetrySink

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
StateChangeCallback = Callable[[str, "CircuitState", "CircuitState"], None]


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


# ---------------------------------------------------------------------------
# Circuit Breaker
# ---------------------------------------------------------------------------

class CircuitBreaker:
    """Failure-isolation state machine for one named service."""

    def __init__(
        self,
        name: str,
        settings: Optional[CircuitBreakerSettings] = None,
        *,
        sink: Optional[TelemetrySink] = None,
        clock: Clock = time.monotonic,
        on_state_change: Optional[StateChangeCallback] = None,
    ):
        self.name = name
        self.settings = settings or CircuitBreakerSettings()
        self._sink = sink
        self._clock = clock
        self._on_state_change = on_state_change

        self._state = CircuitState.CLOSED
        self._failures: list[float] = []
        self._last_failure: Optional[float] = None
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self._state.value})"

    # --- Introspection ---

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        """Failures inside the current window."""
        self._prune()
        return len(self._failures)

    @property
    def last_failure(self) -> Optional[float]:
        return self._last_failure

    def remaining_cooldown(self) -> float:
        """Seconds until an OPEN circuit admits a probe (0 when not OPEN)."""
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return 0.0
        elapsed = self._clock() - self._opened_at
        return max(0.0, self.settings.reset_timeout_seconds - elapsed)

    def peek_ready(self) -> bool:
        """Would execute() admit a call right now? Changes no state."""
        if self._state is CircuitState.CLOSED:
            return True
        if self._state is CircuitState.OPEN:
            return self.remaining_cooldown() <= 0
        return not self._probe_in_flight

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "failures": self.failure_count,
            "cooldown_seconds": round(self.remaining_cooldown(), 3),
        }

    # --- Execution ---

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run `operation` through the breaker.

        Raises CircuitOpenError without invoking the operation when the
        circuit rejects. Otherwise returns the operation's result or
        re-raises its exception unchanged, after recording the outcome.
        """
        is_probe = self._admit()
        try:
            result = await operation()
        except (RequestCancelledError, TokenCallbackError, asyncio.CancelledError):
            raise
        except Exception:
            self._record_failure()
            raise
        else:
            self._record_success()
            return result
        finally:
            if is_probe:
                self._probe_in_flight = False

    def reset(self) -> None:
        """Force CLOSED and forget all failures."""
        previous = self._state
        self._state = CircuitState.CLOSED
        self._failures = []
        self._last_failure = None
        self._opened_at = None
        self._probe_in_flight = False
        if previous is not CircuitState.CLOSED:
            logger.info(
                "circuit_reset",
                extra={"circuit_breaker": self.name, "state": CircuitState.CLOSED.value},
            )
            self._notify(previous, CircuitState.CLOSED)

    # --- Internals ---

    def _admit(self) -> bool:
        """Admit or reject a call. Returns True when the call is the probe."""
        if self._state is CircuitState.CLOSED:
            return False

        if self._state is CircuitState.OPEN:
            remaining = self.remaining_cooldown()
            if remaining > 0:
                raise CircuitOpenError(self.name, remaining)
            self._transition(CircuitState.HALF_OPEN)

        if self._probe_in_flight:
            raise CircuitOpenError(self.name, 0.0)
        self._probe_in_flight = True
        return True

    def _record_success(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            self._failures = []
            self._transition(CircuitState.CLOSED)

    def _record_failure(self) -> None:
        now = self._clock()
        self._failures.append(now)
        self._last_failure = now
        self._prune()

        if self._state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif (
            self._state is CircuitState.CLOSED
            and len(self._failures) >= self.settings.failure_threshold
        ):
            self._transition(CircuitState.OPEN)

    def _prune(self) -> None:
        cutoff = self._clock() - self.settings.failure_window_seconds
        self._failures = [t for t in self._failures if t > cutoff]

    def _transition(self, to: CircuitState) -> None:
        previous = self._state
        if previous is to:
            return
        self._state = to

        if to is CircuitState.OPEN:
            self._opened_at = self._clock()
            failure_count = len(self._failures)
            logger.warning(
                "circuit_opened",
                extra={
                    "circuit_breaker": self.name,
                    "state": to.value,
                    "failure_count": failure_count,
                },
            )
            if self._sink is not None:
                self._sink.record_event(
                    "api_error",
                    f'Circuit breaker "{self.name}" opened after {failure_count} failures',
                    {
                        "circuit_breaker": self.name,
                        "failure_count": failure_count,
                        "reset_timeout_seconds": self.settings.reset_timeout_seconds,
                    },
                )
        else:
            logger.info(
                "circuit_state_changed",
                extra={
                    "circuit_breaker": self.name,
                    "state": to.value,
                    "from_state": previous.value,
                },
            )

        self._notify(previous, to)

    def _notify(self, previous: CircuitState, to: CircuitState) -> None:
        if self._on_state_change is not None:
            self._on_state_change(self.name, previous, to)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class CircuitBreakerRegistry:
    """
    One breaker per service name, created on first use.

    Every breaker in a registry shares its settings, sink and clock. The
    router takes a registry at construction; tests build a fresh one.
    """

    def __init__(
        self,
        settings: Optional[CircuitBreakerSettings] = None,
        *,
        sink: Optional[TelemetrySink] = None,
        clock: Clock = time.monotonic,
        on_state_change: Optional[StateChangeCallback] = None,
    ):
        self.settings = settings or CircuitBreakerSettings()
        self._sink = sink
        self._clock = clock
        self._on_state_change = on_state_change
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name,
                self.settings,
                sink=self._sink,
                clock=self._clock,
                on_state_change=self._on_state_change,
            )
            self._breakers[name] = breaker
        return breaker

    def __contains__(self, name: object) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)

    def states(self) -> dict[str, dict[str, Any]]:
        return {name: cb.snapshot() for name, cb in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()

    def clear(self) -> None:
        """Drop every breaker (teardown)."""
        self._breakers.clear()
