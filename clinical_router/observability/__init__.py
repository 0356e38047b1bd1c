"""Logging, telemetry sinks and the LLM attempt log."""
