"""
PHI-safe attempt log and per-provider metrics for LLM calls.

Every network attempt the router makes becomes one LLMLogEntry. Entries
carry provider, model, task, latency, outcome and token usage, plus a
one-way hash of the prompt for dedup analysis. Prompt text and patient
identifiers never enter an entry.

The logger keeps the most recent entries in a bounded buffer and folds
each entry into running metrics keyed by "provider:model".
"""

from __future__ import annotations

import hashlib
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from clinical_router.llm.types import TokenUsage

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 100


def hash_prompt(prompt: str) -> str:
    """Non-reversible fingerprint of prompt text, prefixed with "ph_"."""
    digest = hashlib.sha256(prompt.encode("utf-8")).hexdigest()
    return f"ph_{digest[:16]}"


@dataclass
class LLMLogEntry:
    """A single provider attempt."""

    provider: str
    model: str
    task: str
    latency_ms: float
    success: bool
    error: Optional[str] = None
    usage: Optional[TokenUsage] = None
    feature: Optional[str] = None
    prompt_hash: Optional[str] = None
    cancelled: bool = False
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ProviderMetrics:
    """Running totals for one provider:model pair."""

    total_requests: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_latency_ms: float = 0.0
    total_tokens: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[str] = None

    @property
    def average_latency_ms(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.total_latency_ms / self.total_requests

    @property
    def failure_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failure_count / self.total_requests


class LLMLogger:
    """
    Collects attempt entries and derived metrics.

    One instance is injected into the router; tests construct their own
    so nothing leaks between them.
    """

    def __init__(self, max_entries: int = MAX_LOG_ENTRIES):
        self._entries: deque[LLMLogEntry] = deque(maxlen=max_entries)
        self._metrics: dict[str, ProviderMetrics] = {}

    def log(self, entry: LLMLogEntry) -> None:
        self._entries.append(entry)

        key = f"{entry.provider}:{entry.model}"
        m = self._metrics.setdefault(key, ProviderMetrics())
        m.total_requests += 1
        m.total_latency_ms += entry.latency_ms
        if entry.success:
            m.success_count += 1
        else:
            m.failure_count += 1
            m.last_error = entry.error
            m.last_error_time = entry.timestamp
        if entry.usage is not None:
            m.total_tokens += entry.usage.total_tokens

        fields = {
            "provider": entry.provider,
            "model": entry.model,
            "task": entry.task,
            "latency_ms": round(entry.latency_ms, 1),
            "prompt_hash": entry.prompt_hash,
        }
        if entry.success:
            if entry.usage is not None:
                fields["tokens"] = entry.usage.total_tokens
            logger.info("llm_attempt_ok", extra=fields)
        elif entry.cancelled:
            logger.info("llm_attempt_cancelled", extra=fields)
        else:
            logger.warning(
                "llm_attempt_failed",
                extra={**fields, "error": (entry.error or "")[:200]},
            )

    def metrics(self, provider: Optional[str] = None) -> dict[str, ProviderMetrics]:
        """Metrics for every provider:model pair, or just one provider's."""
        if provider is None:
            return dict(self._metrics)
        prefix = f"{provider}:"
        return {k: v for k, v in self._metrics.items() if k.startswith(prefix)}

    def recent(self, count: int = 20) -> list[LLMLogEntry]:
        if count <= 0:
            return []
        return list(self._entries)[-count:]

    def average_latency(self, provider: str) -> float:
        selected = self.metrics(provider).values()
        requests = sum(m.total_requests for m in selected)
        if requests == 0:
            return 0.0
        return sum(m.total_latency_ms for m in selected) / requests

    def failure_rate(self, provider: str) -> float:
        selected = self.metrics(provider).values()
        requests = sum(m.total_requests for m in selected)
        if requests == 0:
            return 0.0
        return sum(m.failure_count for m in selected) / requests

    def reset(self) -> None:
        self._entries.clear()
        self._metrics.clear()
