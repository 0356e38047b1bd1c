"""
Configuration for the clinical LLM router.

Pydantic models for provider credentials and routing rules, plus
read-only loaders (YAML file or environment).
"""
