"""
Per-provider prompt adjustment.

Callers write one canonical prompt. Before each candidate is tried the
router compiles it for that candidate's provider:

- structured context is flattened into a readable block appended to the
  user prompt (HTML stripped, camelCase keys turned into labels)
- JSON instructions are phrased the way each vendor follows best
- Anthropic gets the context block wrapped in XML tags

Context values never reach the log; only the compiled prompt's hash does.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Mapping

from clinical_router.llm.types import LLMRequest

CONTEXT_HEADER = "PATIENT CONTEXT:"

_JSON_SYSTEM_SUFFIX: dict[str, str] = {
    "anthropic": (
        "IMPORTANT: Respond ONLY with valid JSON. Do not include any text before "
        "or after the JSON object. Do not wrap in markdown code blocks."
    ),
    "openai": "You must respond with valid JSON only.",
    "gemini": (
        "CRITICAL: Your response must be ONLY valid JSON. No markdown, no "
        "explanation, just the JSON object."
    ),
    "grok": "Respond with valid JSON only. No additional text or formatting.",
    "glm": (
        "Please respond with valid JSON only. Do not include any other text. "
        "请仅返回有效的JSON格式。"
    ),
    # Open-weight models need the most explicit instruction
    "huggingface": (
        "You MUST respond with ONLY a valid JSON object. Do not include any text, "
        "explanation, or markdown formatting before or after the JSON. Start your "
        "response with { and end with }."
    ),
}

_GEMINI_JSON_REMINDER = "Remember: respond with valid JSON only, no other text."

_HTML_TAG = re.compile(r"<[^>]*>")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


@dataclass(frozen=True)
class CompiledPrompt:
    system_prompt: str
    user_prompt: str


def strip_html(text: str) -> str:
    return _HTML_TAG.sub("", text).strip()


def context_label(key: str) -> str:
    """Turn a context key into a label: labResults -> Lab Results."""
    words = _CAMEL_BOUNDARY.sub(" ", key).replace("_", " ").split()
    return " ".join(w[:1].upper() + w[1:] for w in words)


def format_context(context: Mapping[str, Any]) -> str:
    """Flatten a nested context mapping into "Label: value" lines."""
    sections: list[str] = []
    for key, value in context.items():
        if value is None:
            continue
        label = context_label(key)

        if isinstance(value, str):
            cleaned = strip_html(value)
            if cleaned:
                sections.append(f"{label}: {cleaned}")
        elif isinstance(value, Mapping):
            nested = format_context(value)
            if nested:
                sections.append(f"{label}:\n{nested}")
        elif isinstance(value, (list, tuple)):
            items = [
                strip_html(v) if isinstance(v, str) else json.dumps(v, default=str)
                for v in value
                if v
            ]
            if items:
                sections.append(f"{label}: {', '.join(items)}")
        else:
            sections.append(f"{label}: {value}")

    return "\n".join(sections)


def compile_prompt(request: LLMRequest, provider: str) -> CompiledPrompt:
    """Adjust a request's prompts for one provider."""
    system_prompt = request.system_prompt
    user_prompt = request.user_prompt

    context_block = format_context(request.context) if request.context else ""
    if context_block:
        if provider == "anthropic":
            user_prompt = (
                f"{user_prompt}\n\n---\n\n"
                f"<patient_context>\n{context_block}\n</patient_context>"
            )
        else:
            user_prompt = f"{user_prompt}\n\n---\n\n{CONTEXT_HEADER}\n{context_block}"

    if request.wants_json:
        suffix = _JSON_SYSTEM_SUFFIX.get(provider)
        if suffix:
            system_prompt = f"{system_prompt}\n\n{suffix}" if system_prompt else suffix
        if provider == "gemini":
            user_prompt = f"{user_prompt}\n\n{_GEMINI_JSON_REMINDER}"

    return CompiledPrompt(system_prompt=system_prompt, user_prompt=user_prompt)
