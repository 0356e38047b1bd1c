"""LLM routing: request contract, provider adapters, circuit breakers, router."""
