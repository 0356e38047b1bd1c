"""
Provider adapters, one per backend vendor.

PROVIDER_CLASSES maps each provider name to its adapter class.
"""

from clinical_router.llm.providers.anthropic import AnthropicProvider
from clinical_router.llm.providers.base import BaseProvider, TokenCallback
from clinical_router.llm.providers.gemini import GeminiProvider
from clinical_router.llm.providers.huggingface import HuggingFaceProvider
from clinical_router.llm.providers.openai import GLMProvider, GrokProvider, OpenAIProvider

PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    OpenAIProvider.name: OpenAIProvider,
    AnthropicProvider.name: AnthropicProvider,
    GeminiProvider.name: GeminiProvider,
    GrokProvider.name: GrokProvider,
    GLMProvider.name: GLMProvider,
    HuggingFaceProvider.name: HuggingFaceProvider,
}

__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "GLMProvider",
    "GeminiProvider",
    "GrokProvider",
    "HuggingFaceProvider",
    "OpenAIProvider",
    "PROVIDER_CLASSES",
    "TokenCallback",
]
