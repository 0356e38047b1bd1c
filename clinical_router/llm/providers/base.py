"""
Provider adapter contract.

An adapter translates the uniform LLMRequest into one vendor's HTTP wire
protocol and the vendor's reply back into an LLMResponse. Adapters never
raise for vendor or transport problems: every outcome, including
cancellation, comes back as an LLMResponse with latency measured from
dispatch.

Subclasses supply the vendor specifics (endpoint, headers, body, response
parsing, stream chunk extraction, health probe). Everything else
(dispatch, cancellation, non-2xx handling, SSE streaming, client
lifecycle) lives here.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import httpx

from clinical_router.config.schema import ProviderConfig
from clinical_router.exceptions import RequestCancelledError, TokenCallbackError
from clinical_router.llm.cancellation import run_cancellable
from clinical_router.llm.sse import iter_sse_json
from clinical_router.llm.tokens import DEFAULT_ESTIMATOR, TokenEstimator
from clinical_router.llm.types import LLMRequest, LLMResponse

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]

MAX_ERROR_BODY_CHARS = 500
DEFAULT_HTTP_TIMEOUT = 120.0


class BaseProvider(ABC):
    """
    Base class for all provider adapters.

    The httpx.AsyncClient is either injected (shared, never closed here)
    or created lazily on first use and closed by aclose().
    """

    name: str = ""
    vendor_label: str = ""
    default_base_url: str = ""
    available_models: tuple[str, ...] = ()

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: Optional[httpx.AsyncClient] = None,
        estimator: Optional[TokenEstimator] = None,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
    ):
        self.config = config
        self.base_url = (config.base_url or self.default_base_url).rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._estimator = estimator or DEFAULT_ESTIMATOR
        self._http_timeout = http_timeout

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_url={self.base_url!r})"

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._http_timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # --- Vendor hooks ---

    @abstractmethod
    def _headers(self) -> dict[str, str]:
        """Auth and content headers, before config.headers overrides."""

    @abstractmethod
    def _endpoint(self, request: LLMRequest, *, stream: bool) -> str:
        """Full URL for a generation call."""

    @abstractmethod
    def _payload(self, request: LLMRequest, *, stream: bool) -> dict[str, Any]:
        """JSON body for a generation call."""

    @abstractmethod
    def _parse_response(
        self, data: dict[str, Any], request: LLMRequest, latency_ms: float
    ) -> LLMResponse:
        """Build a successful LLMResponse from a decoded 2xx body."""

    @abstractmethod
    def _extract_stream_text(self, chunk: dict[str, Any]) -> Optional[str]:
        """Text carried by one decoded stream record, if any."""

    @abstractmethod
    async def health_check(self) -> bool:
        """True when the vendor endpoint is reachable with these credentials."""

    # --- Public API ---

    async def list_models(self) -> list[str]:
        return list(self.available_models)

    def estimate_tokens(self, text: str) -> int:
        return self._estimator.estimate(text)

    async def send_message(self, request: LLMRequest) -> LLMResponse:
        start = time.monotonic()
        try:
            http_request = self._build_http_request(request, stream=False)
            response = await run_cancellable(
                self.client.send(http_request), request.cancel_token
            )
            latency_ms = _elapsed_ms(start)
            if not response.is_success:
                return self._error_response(
                    request, response.status_code, response.text, latency_ms
                )
            return self._parse_response(response.json(), request, latency_ms)

        except RequestCancelledError as e:
            return self._cancelled_response(request, e, start)
        except Exception as e:
            return self._exception_response(request, e, start)

    async def stream(self, request: LLMRequest, on_token: TokenCallback) -> LLMResponse:
        """
        Stream a completion, pushing each text fragment to on_token.

        Returns the full concatenated content once the vendor sends
        [DONE] or closes the stream.

        An exception raised by on_token is re-raised as TokenCallbackError
        rather than reported as a vendor failure.
        """
        start = time.monotonic()
        try:
            return await run_cancellable(
                self._stream(request, on_token, start), request.cancel_token
            )
        except RequestCancelledError as e:
            return self._cancelled_response(request, e, start)
        except TokenCallbackError:
            raise
        except Exception as e:
            return self._exception_response(request, e, start)

    # --- Internals ---

    def _build_http_request(self, request: LLMRequest, *, stream: bool) -> httpx.Request:
        headers = {**self._headers(), **self.config.headers}
        return self.client.build_request(
            "POST",
            self._endpoint(request, stream=stream),
            headers=headers,
            json=self._payload(request, stream=stream),
        )

    async def _stream(
        self, request: LLMRequest, on_token: TokenCallback, start: float
    ) -> LLMResponse:
        http_request = self._build_http_request(request, stream=True)
        response = await self.client.send(http_request, stream=True)
        try:
            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                return self._error_response(
                    request, response.status_code, body, _elapsed_ms(start)
                )

            fragments: list[str] = []
            async for chunk in iter_sse_json(response.aiter_lines()):
                text = self._extract_stream_text(chunk)
                if text:
                    fragments.append(text)
                    try:
                        on_token(text)
                    except Exception as e:
                        raise TokenCallbackError(self.name, e) from e

            return LLMResponse(
                success=True,
                content="".join(fragments),
                provider=self.name,
                model=request.model,
                latency_ms=_elapsed_ms(start),
            )
        finally:
            await response.aclose()

    async def _probe(self, method: str, url: str, **kwargs: Any) -> Optional[httpx.Response]:
        """Issue a health probe; None when the endpoint is unreachable."""
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.info(
                "provider_unreachable",
                extra={"provider": self.name, "error": str(e)[:200]},
            )
            return None

    def _error_response(
        self, request: LLMRequest, status_code: int, body: str, latency_ms: float
    ) -> LLMResponse:
        return LLMResponse.failure(
            self.name,
            request.model,
            f"{self.vendor_label} API error {status_code}: "
            f"{body[:MAX_ERROR_BODY_CHARS]}",
            latency_ms=latency_ms,
        )

    def _cancelled_response(
        self, request: LLMRequest, err: RequestCancelledError, start: float
    ) -> LLMResponse:
        return LLMResponse.failure(
            self.name,
            request.model,
            err.reason,
            latency_ms=_elapsed_ms(start),
            cancelled=True,
        )

    def _exception_response(
        self, request: LLMRequest, err: Exception, start: float
    ) -> LLMResponse:
        message = str(err) or f"Unknown {self.vendor_label} error ({type(err).__name__})"
        return LLMResponse.failure(
            self.name,
            request.model,
            message[:MAX_ERROR_BODY_CHARS],
            latency_ms=_elapsed_ms(start),
        )


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000
