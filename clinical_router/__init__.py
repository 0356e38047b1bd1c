"""
Clinical LLM Router: multi-provider routing and resilience layer.

Gives clinical AI features one request/response contract across
OpenAI, Anthropic, Gemini, Grok and GLM, with task-based routing,
fallback chains, and per-provider circuit breakers.
"""

__version__ = "0.1.0"
