"""
Chat-completions adapters: OpenAI, Grok (xAI) and GLM (Zhipu).

All three speak the OpenAI chat completions dialect: role-tagged
messages, Bearer auth, `choices[0].message.content` in replies and
`choices[0].delta.content` in stream records. They differ in base URL,
model catalogue, whether native JSON mode is available, and how health
is probed.
"""

from __future__ import annotations

from typing import Any, Optional

from clinical_router.llm.providers.base import BaseProvider
from clinical_router.llm.types import LLMRequest, LLMResponse, TokenUsage
from clinical_router.llm.wire import chat_completions_body, to_payload


class ChatCompletionsProvider(BaseProvider):
    """Shared implementation for OpenAI-compatible vendors."""

    # GLM honours JSON only through prompt instructions
    native_json_mode: bool = True
    health_model: Optional[str] = None

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def _endpoint(self, request: LLMRequest, *, stream: bool) -> str:
        return f"{self.base_url}/chat/completions"

    def _payload(self, request: LLMRequest, *, stream: bool) -> dict[str, Any]:
        body = chat_completions_body(
            request, json_mode=self.native_json_mode, stream=stream
        )
        return to_payload(body)

    def _parse_response(
        self, data: dict[str, Any], request: LLMRequest, latency_ms: float
    ) -> LLMResponse:
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""

        usage = None
        raw_usage = data.get("usage")
        if raw_usage:
            prompt = raw_usage.get("prompt_tokens", 0) or 0
            completion = raw_usage.get("completion_tokens", 0) or 0
            usage = TokenUsage(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=raw_usage.get("total_tokens") or prompt + completion,
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
        choices = chunk.get("choices") or []
        if not choices:
            return None
        return (choices[0].get("delta") or {}).get("content")

    async def health_check(self) -> bool:
        headers = {**self._headers(), **self.config.headers}
        if self.health_model is None:
            response = await self._probe("GET", f"{self.base_url}/models", headers=headers)
            return response is not None and response.is_success

        response = await self._probe(
            "POST",
            f"{self.base_url}/chat/completions",
            headers=headers,
            json={
                "model": self.health_model,
                "messages": [{"role": "user", "content": "ping"}],
                "max_tokens": 1,
            },
        )
        return response is not None and response.is_success


class OpenAIProvider(ChatCompletionsProvider):
    name = "openai"
    vendor_label = "OpenAI"
    default_base_url = "https://api.openai.com/v1"
    available_models = (
        "gpt-4o",
        "gpt-4o-mini",
        "gpt-4-turbo-preview",
        "gpt-4",
        "gpt-3.5-turbo",
        "o1-preview",
        "o1-mini",
    )

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.config.organization_id:
            headers["OpenAI-Organization"] = self.config.organization_id
        return headers


class GrokProvider(ChatCompletionsProvider):
    name = "grok"
    vendor_label = "Grok"
    default_base_url = "https://api.x.ai/v1"
    available_models = ("grok-2", "grok-2-mini")


class GLMProvider(ChatCompletionsProvider):
    name = "glm"
    vendor_label = "GLM"
    default_base_url = "https://open.bigmodel.cn/api/paas/v4"
    available_models = ("glm-4", "glm-4-flash", "glm-4-air", "glm-4-airx", "glm-4-long")
    native_json_mode = False
    health_model = "glm-4-flash"
