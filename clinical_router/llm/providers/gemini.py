"""
Google Gemini adapter (generateContent).

The model name is part of the URL path, the prompt travels as a parts
array inside a single user turn, and the system prompt is a top-level
`systemInstruction`. Streaming uses `:streamGenerateContent?alt=sse`.
The API key goes in the `x-goog-api-key` header so it never appears in
a logged URL.
"""

from __future__ import annotations

from typing import Any, Optional

from clinical_router.llm.providers.base import BaseProvider
from clinical_router.llm.types import LLMRequest, LLMResponse, TokenUsage
from clinical_router.llm.wire import generate_content_body, to_payload


def _candidate_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)


class GeminiProvider(BaseProvider):
    name = "gemini"
    vendor_label = "Gemini"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"
    available_models = (
        "gemini-2.5-pro",
        "gemini-2.5-flash",
        "gemini-2.0-flash",
        "gemini-1.5-pro",
        "gemini-1.5-flash",
    )

    def _headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self.config.api_key,
            "Content-Type": "application/json",
        }

    def _endpoint(self, request: LLMRequest, *, stream: bool) -> str:
        if stream:
            return f"{self.base_url}/models/{request.model}:streamGenerateContent?alt=sse"
        return f"{self.base_url}/models/{request.model}:generateContent"

    def _payload(self, request: LLMRequest, *, stream: bool) -> dict[str, Any]:
        return to_payload(generate_content_body(request))

    def _parse_response(
        self, data: dict[str, Any], request: LLMRequest, latency_ms: float
    ) -> LLMResponse:
        usage = None
        meta = data.get("usageMetadata")
        if meta:
            usage = TokenUsage(
                prompt_tokens=meta.get("promptTokenCount", 0) or 0,
                completion_tokens=meta.get("candidatesTokenCount", 0) or 0,
                total_tokens=meta.get("totalTokenCount", 0) or 0,
            )

        return LLMResponse(
            success=True,
            content=_candidate_text(data),
            provider=self.name,
            model=request.model,
            latency_ms=latency_ms,
            usage=usage,
        )

    def _extract_stream_text(self, chunk: dict[str, Any]) -> Optional[str]:
        return _candidate_text(chunk) or None

    async def health_check(self) -> bool:
        response = await self._probe(
            "GET",
            f"{self.base_url}/models",
            headers={**self._headers(), **self.config.headers},
        )
        return response is not None and response.is_success
