"""
HuggingFace adapter: serverless Inference API, dedicated Inference
Endpoints, or a self-hosted Text Generation Inference (TGI) server.

Two dialects, chosen from the base URL:
- native text-generation (default): POST {base_url}/{model} with a single
  templated `inputs` prompt; replies are `[{"generated_text": ...}]` and
  stream records carry `token.text`
- chat completions: a base URL containing `/v1` (TGI, Inference
  Endpoints) or an `x-use-openai-compat: true` header switches to the
  OpenAI-compatible route at {base_url}/chat/completions

JSON is requested through prompt instructions only.
"""

from __future__ import annotations

from typing import Any, Optional

from clinical_router.llm.providers.openai import ChatCompletionsProvider
from clinical_router.llm.types import LLMRequest, LLMResponse
from clinical_router.llm.wire import text_generation_body, to_payload

OPENAI_COMPAT_HEADER = "x-use-openai-compat"


def _generated_text(data: Any) -> str:
    if isinstance(data, list):
        data = data[0] if data else {}
    if not isinstance(data, dict):
        return ""
    return data.get("generated_text") or ""


class HuggingFaceProvider(ChatCompletionsProvider):
    name = "huggingface"
    vendor_label = "HuggingFace"
    default_base_url = "https://api-inference.huggingface.co/models"
    available_models = (
        "meta-llama/Meta-Llama-3.1-70B-Instruct",
        "meta-llama/Meta-Llama-3.1-8B-Instruct",
        "mistralai/Mixtral-8x7B-Instruct-v0.1",
        "mistralai/Mistral-7B-Instruct-v0.3",
        "microsoft/Phi-3-mini-4k-instruct",
    )
    native_json_mode = False

    @property
    def openai_compatible(self) -> bool:
        return (
            "/v1" in self.base_url
            or self.config.headers.get(OPENAI_COMPAT_HEADER) == "true"
        )

    def _endpoint(self, request: LLMRequest, *, stream: bool) -> str:
        if not self.openai_compatible:
            return f"{self.base_url}/{request.model}"
        if self.base_url.endswith("/v1"):
            return f"{self.base_url}/chat/completions"
        return f"{self.base_url}/v1/chat/completions"

    def _payload(self, request: LLMRequest, *, stream: bool) -> dict[str, Any]:
        if self.openai_compatible:
            return super()._payload(request, stream=stream)
        return to_payload(text_generation_body(request, stream=stream))

    def _parse_response(
        self, data: Any, request: LLMRequest, latency_ms: float
    ) -> LLMResponse:
        if self.openai_compatible:
            return super()._parse_response(data, request, latency_ms)
        return LLMResponse(
            success=True,
            content=_generated_text(data),
            provider=self.name,
            model=request.model,
            latency_ms=latency_ms,
        )

    def _extract_stream_text(self, chunk: dict[str, Any]) -> Optional[str]:
        if self.openai_compatible:
            return super()._extract_stream_text(chunk)
        token = chunk.get("token") or {}
        if token.get("special"):
            return None
        return token.get("text")

    async def health_check(self) -> bool:
        if self.openai_compatible:
            return await super().health_check()

        # 503 means the model is still loading: reachable, credentials fine
        model = self.config.default_model or self.available_models[0]
        response = await self._probe(
            "POST",
            f"{self.base_url}/{model}",
            headers={**self._headers(), **self.config.headers},
            json={"inputs": "ping", "parameters": {"max_new_tokens": 1}},
        )
        if response is None:
            return False
        return response.is_success or response.status_code == 503
