"""
Cooperative cancellation for in-flight LLM requests.

A CancellationToken is handed to the router inside an LLMRequest. Once
cancelled, the router stops walking the candidate chain, any pending
retry delay ends early, and the adapter aborts its HTTP call.

Usage:
    token = CancellationToken()
    task = asyncio.create_task(router.route(
        LLMRequest(system_prompt="...", user_prompt="...", cancel_token=token),
    ))
    token.cancel("user navigated away")
    response = await task   # success=False, cancelled=True
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from clinical_router.exceptions import RequestCancelledError

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal backed by an asyncio.Event."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Request cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError(self.reason or "Request cancelled")


async def run_cancellable(
    awaitable: Awaitable[T],
    token: Optional[CancellationToken],
) -> T:
    """
    Await `awaitable`, aborting it as soon as `token` fires.

    The awaitable runs as its own task. If the token wins the race the
    task is cancelled and awaited before RequestCancelledError is raised,
    so no HTTP work outlives the call.
    """
    if token is None:
        return await awaitable
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        token.raise_if_cancelled()

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        waiter.cancel()
        await asyncio.gather(work, waiter, return_exceptions=True)
        raise

    if work.done():
        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)
        return work.result()

    work.cancel()
    await asyncio.gather(work, return_exceptions=True)
    raise RequestCancelledError(token.reason or "Request cancelled")


async def cancellable_sleep(delay: float, token: Optional[CancellationToken]) -> None:
    """Sleep for `delay` seconds, waking early with RequestCancelledError."""
    if delay <= 0:
        if token is not None:
            token.raise_if_cancelled()
        return
    await run_cancellable(asyncio.sleep(delay), token)
