"""
Vendor request bodies.

Each backend family has its own body shape. They are modelled as a small
closed union of frozen dataclasses, built from an LLMRequest by the
constructor functions below and turned into JSON-ready dicts by
to_payload(). Adding a family means adding a dataclass and a branch in
to_payload(); anything else hitting to_payload() is a TypeError.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from clinical_router.llm.types import LLMRequest


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str


@dataclass(frozen=True)
class ChatCompletionsBody:
    """OpenAI-compatible chat completions (OpenAI, Grok, GLM)."""

    model: str
    messages: tuple[ChatMessage, ...]
    temperature: float
    max_tokens: int
    json_mode: bool = False
    stream: bool = False


@dataclass(frozen=True)
class AnthropicMessagesBody:
    """Anthropic Messages API: system prompt lives outside the messages."""

    model: str
    user_prompt: str
    max_tokens: int
    temperature: float
    system: Optional[str] = None
    stream: bool = False


@dataclass(frozen=True)
class GenerateContentBody:
    """Gemini generateContent: one user turn of text parts."""

    user_prompt: str
    temperature: float
    max_output_tokens: int
    system_instruction: Optional[str] = None
    json_mode: bool = False


@dataclass(frozen=True)
class TextGenerationBody:
    """HuggingFace text-generation inference: one templated prompt string."""

    inputs: str
    max_new_tokens: int
    temperature: float
    stream: bool = False


WireBody = Union[
    ChatCompletionsBody, AnthropicMessagesBody, GenerateContentBody, TextGenerationBody
]


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------

def chat_completions_body(
    request: LLMRequest,
    *,
    json_mode: bool = True,
    stream: bool = False,
) -> ChatCompletionsBody:
    """
    Build a chat completions body.

    json_mode=False suppresses the native response_format field even when
    the request wants JSON (vendors that only honour prompt instructions).
    """
    messages: list[ChatMessage] = []
    if request.system_prompt:
        messages.append(ChatMessage(role="system", content=request.system_prompt))
    messages.append(ChatMessage(role="user", content=request.user_prompt))
    return ChatCompletionsBody(
        model=request.model,
        messages=tuple(messages),
        temperature=request.temperature,
        max_tokens=request.max_tokens,
        json_mode=json_mode and request.wants_json,
        stream=stream,
    )


def anthropic_messages_body(request: LLMRequest, *, stream: bool = False) -> AnthropicMessagesBody:
    return AnthropicMessagesBody(
        model=request.model,
        user_prompt=request.user_prompt,
        max_tokens=request.max_tokens,
        temperature=request.temperature,
        system=request.system_prompt or None,
        stream=stream,
    )


def generate_content_body(request: LLMRequest) -> GenerateContentBody:
    return GenerateContentBody(
        user_prompt=request.user_prompt,
        temperature=request.temperature,
        max_output_tokens=request.max_tokens,
        system_instruction=request.system_prompt or None,
        json_mode=request.wants_json,
    )


def chat_template_prompt(request: LLMRequest) -> str:
    """Fold system and user prompts into a Zephyr-style chat template."""
    parts: list[str] = []
    if request.system_prompt:
        parts.append(f"<|system|>\n{request.system_prompt}</s>")
    parts.append(f"<|user|>\n{request.user_prompt}</s>")
    parts.append("<|assistant|>\n")
    return "\n".join(parts)


def text_generation_body(request: LLMRequest, *, stream: bool = False) -> TextGenerationBody:
    return TextGenerationBody(
        inputs=chat_template_prompt(request),
        max_new_tokens=request.max_tokens,
        temperature=request.temperature,
        stream=stream,
    )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def to_payload(body: WireBody) -> dict[str, Any]:
    """Render a wire body as the JSON object the vendor expects."""
    if isinstance(body, ChatCompletionsBody):
        payload: dict[str, Any] = {
            "model": body.model,
            "messages": [{"role": m.role, "content": m.content} for m in body.messages],
            "temperature": body.temperature,
            "max_tokens": body.max_tokens,
        }
        if body.json_mode:
            payload["response_format"] = {"type": "json_object"}
        if body.stream:
            payload["stream"] = True
        return payload

    elif isinstance(body, AnthropicMessagesBody):
        payload = {
            "model": body.model,
            "messages": [{"role": "user", "content": body.user_prompt}],
            "max_tokens": body.max_tokens,
            "temperature": body.temperature,
        }
        if body.system:
            payload["system"] = body.system
        if body.stream:
            payload["stream"] = True
        return payload

    elif isinstance(body, GenerateContentBody):
        generation_config: dict[str, Any] = {
            "temperature": body.temperature,
            "maxOutputTokens": body.max_output_tokens,
        }
        if body.json_mode:
            generation_config["responseMimeType"] = "application/json"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": body.user_prompt}]}],
            "generationConfig": generation_config,
        }
        if body.system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": body.system_instruction}]}
        return payload

    elif isinstance(body, TextGenerationBody):
        payload = {
            "inputs": body.inputs,
            "parameters": {
                "max_new_tokens": body.max_new_tokens,
                "temperature": body.temperature,
                "return_full_text": False,
            },
        }
        if body.stream:
            payload["stream"] = True
        return payload

    raise TypeError(f"Unknown wire body type: {type(body).__name__}")
