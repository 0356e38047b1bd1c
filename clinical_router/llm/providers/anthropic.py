"""
Anthropic Messages API adapter.

Differences from the chat-completions family:
- the system prompt is a top-level `system` field, not a message
- auth is `x-api-key` plus a pinned `anthropic-version` header
- replies are a list of content blocks; only `text` blocks count
- stream text arrives in `content_block_delta` records
"""

from __future__ import annotations

from typing import Any, Optional

from clinical_router.llm.providers.base import BaseProvider
from clinical_router.llm.types import LLMRequest, LLMResponse, TokenUsage
from clinical_router.llm.wire import anthropic_messages_body, to_payload

API_VERSION = "2023-06-01"
HEALTH_MODEL = "claude-3-5-haiku-20241022"


class AnthropicProvider(BaseProvider):
    name = "anthropic"
    vendor_label = "Anthropic"
    default_base_url = "https://api.anthropic.com/v1"
    available_models = (
        "claude-opus-4-20250514",
        "claude-sonnet-4-20250514",
        "claude-3-5-haiku-20241022",
        "claude-3-5-sonnet-20241022",
        "claude-3-opus-20240229",
    )

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": API_VERSION,
            "Content-Type": "application/json",
        }

    def _endpoint(self, request: LLMRequest, *, stream: bool) -> str:
        return f"{self.base_url}/messages"

    def _payload(self, request: LLMRequest, *, stream: bool) -> dict[str, Any]:
        return to_payload(anthropic_messages_body(request, stream=stream))

    def _parse_response(
        self, data: dict[str, Any], request: LLMRequest, latency_ms: float
    ) -> LLMResponse:
        content = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        )

        usage = None
        raw_usage = data.get("usage")
        if raw_usage:
            usage = TokenUsage.from_counts(
                raw_usage.get("input_tokens", 0) or 0,
                raw_usage.get("output_tokens", 0) or 0,
            )

        return LLMResponse(
            success=True,
            content=content,
            provider=self.name,
            model=data.get("model") or request.model,
            latency_ms=latency_ms,
            usage=usage,
        )

    def _extract_stream_text(self, chunk: dict[str, Any]) -> Optional[str]:
        if chunk.get("type") != "content_block_delta":
            return None
        return (chunk.get("delta") or {}).get("text")

    async def health_check(self) -> bool:
        # No models endpoint; a 400 still proves the key and host are good
        response = await self._probe(
            "POST",
            f"{self.base_url}/messages",
            headers={**self._headers(), **self.config.headers},
            json={
                "model": HEALTH_MODEL,
                "max_tokens": 1,
                "messages": [{"role": "user", "content": "ping"}],
            },
        )
        if response is None:
            return False
        return response.is_success or response.status_code == 400
