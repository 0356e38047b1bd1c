"""
Multi-model consensus for critical clinical output.

Pipeline:
1. Writer model drafts the response
2. Critic model reviews the draft for errors, omissions and fabrications
3. Synthesizer model (defaults to the writer) produces the final version

Every call goes through LLMRouter.route() pinned to its target, so
circuit breakers, the retry budget and the attempt log all apply. The
agreement score is a heuristic read of the critic's verdict.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

from clinical_router.config.schema import ModelTarget, TaskCategory
from clinical_router.llm.router import LLMRouter
from clinical_router.llm.types import LLMRequest, LLMResponse, ResponseFormat

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass
class ConsensusRequest:
    request: LLMRequest
    models: Sequence[ModelTarget]
    task: str | TaskCategory = TaskCategory.CLINICAL_NOTE


@dataclass
class ConsensusResult:
    final_content: str
    responses: list[LLMResponse] = field(default_factory=list)
    critique: Optional[str] = None
    agreement_score: float = 0.0


@dataclass
class DualCheckResult:
    response: LLMResponse
    agreement_score: float


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

CRITIQUE_SYSTEM_PROMPT = """You are a critical care physician reviewing a colleague's clinical documentation. Your role is to identify errors, gaps, or concerns in the output.

Review the original clinical request and the generated response. Identify:
1. **Factual errors**: Incorrect medical terminology, wrong drug dosages, inaccurate lab interpretations
2. **Omissions**: Missing important clinical details from the original data
3. **Fabrications**: Any data in the response that was NOT present in the original request
4. **Safety concerns**: Potentially dangerous recommendations or contradictions
5. **Quality issues**: Poor organization, unclear language, missing sections

Be specific about each issue, quote the problematic text and suggest corrections. If the response is accurate and complete, say so clearly.

Rate overall quality: GOOD / ACCEPTABLE / NEEDS_REVISION / UNSAFE"""

SYNTHESIS_SYSTEM_PROMPT = """You are a senior attending physician producing the final version of a clinical document. You have been given the original clinical data, a first draft from one physician, and a critical review from another physician.

Produce the FINAL version that incorporates valid corrections from the critique, stays accurate to the original patient data, and keeps the good parts of the first draft. Only use data present in the original request and follow the output format it asked for.

Do NOT add any meta-commentary. Output ONLY the final clinical document."""


def build_critique_prompt(original: LLMRequest, draft: str) -> str:
    return (
        "ORIGINAL REQUEST:\n"
        f"System instruction: {original.system_prompt}\n\n"
        f"User input: {original.user_prompt}\n\n"
        "---\n\n"
        "GENERATED RESPONSE TO REVIEW:\n"
        f"{draft}\n\n"
        "---\n\n"
        "Please provide your critical review of the generated response."
    )


def build_synthesis_prompt(original: LLMRequest, draft: str, critique: str) -> str:
    return (
        "ORIGINAL REQUEST:\n"
        f"System instruction: {original.system_prompt}\n\n"
        f"User input: {original.user_prompt}\n\n"
        "---\n\n"
        f"FIRST DRAFT:\n{draft}\n\n"
        "---\n\n"
        f"CRITICAL REVIEW:\n{critique}\n\n"
        "---\n\n"
        "Please produce the final, corrected version of the clinical document. "
        "Use the SAME output format as requested in the original system instruction."
    )


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

# Checked in order; the first verdict found wins
_VERDICT_SCORES: tuple[tuple[str, float], ...] = (
    ("unsafe", 0.1),
    ("needs_revision", 0.3),
    ("acceptable", 0.7),
    ("good", 0.9),
)

_NEGATIVE_TERMS = (
    "error", "incorrect", "wrong", "missing", "fabricat",
    "inaccurate", "unsafe", "dangerous",
)
_POSITIVE_TERMS = (
    "accurate", "correct", "complete", "well-organized", "thorough", "appropriate",
)


def agreement_score(critique: str) -> float:
    """0..1, higher means the critic agreed more with the draft."""
    lower = critique.lower()
    for verdict, score in _VERDICT_SCORES:
        if verdict in lower:
            return score

    negatives = sum(lower.count(term) for term in _NEGATIVE_TERMS)
    positives = sum(lower.count(term) for term in _POSITIVE_TERMS)
    total = negatives + positives
    if total == 0:
        return 0.5
    return positives / total


def text_similarity(a: str, b: str) -> float:
    """Jaccard overlap of the words longer than three characters."""
    words_a = {w for w in re.split(r"\s+", a.lower()) if len(w) > 3}
    words_b = {w for w in re.split(r"\s+", b.lower()) if len(w) > 3}
    if not words_a and not words_b:
        return 1.0
    union = words_a | words_b
    return len(words_a & words_b) / len(union)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ConsensusEngine:
    """Writer -> critic -> synthesizer pipeline on top of an LLMRouter."""

    def __init__(self, router: LLMRouter):
        self._router = router

    async def run_consensus(self, consensus: ConsensusRequest) -> ConsensusResult:
        """
        Run the consensus pipeline.

        Raises:
            ValueError: fewer than two models were given.
        """
        if len(consensus.models) < 2:
            raise ValueError("Consensus requires at least 2 models")

        writer, critic = consensus.models[0], consensus.models[1]
        synthesizer = consensus.models[2] if len(consensus.models) > 2 else writer
        original = consensus.request
        task = consensus.task

        draft = await self._router.route(
            original, task, target=writer, allow_fallback=False, feature="consensus_writer"
        )
        if not draft.success:
            logger.warning(
                "consensus_writer_failed",
                extra={"provider": writer.provider, "model": writer.model},
            )
            return ConsensusResult(final_content="", responses=[draft], agreement_score=0.0)

        critique_request = replace(
            original,
            model=critic.model,
            system_prompt=CRITIQUE_SYSTEM_PROMPT,
            user_prompt=build_critique_prompt(original, draft.content),
            context=None,
            response_format=ResponseFormat.TEXT,
            temperature=0.2,
        )
        critique = await self._router.route(
            critique_request, task, target=critic, allow_fallback=False,
            feature="consensus_critic",
        )
        if not critique.success:
            return ConsensusResult(
                final_content=draft.content,
                responses=[draft, critique],
                agreement_score=0.5,
            )

        synthesis_request = replace(
            original,
            model=synthesizer.model,
            system_prompt=SYNTHESIS_SYSTEM_PROMPT,
            user_prompt=build_synthesis_prompt(original, draft.content, critique.content),
            context=None,
            temperature=0.1,
        )
        synthesis = await self._router.route(
            synthesis_request, task, target=synthesizer, allow_fallback=False,
            feature="consensus_synthesizer",
        )

        score = agreement_score(critique.content)
        logger.info(
            "consensus_complete",
            extra={
                "task": task.value if isinstance(task, TaskCategory) else task,
                "agreement_score": score,
                "synthesis_ok": synthesis.success,
            },
        )
        return ConsensusResult(
            final_content=synthesis.content if synthesis.success else draft.content,
            responses=[draft, critique, synthesis],
            critique=critique.content,
            agreement_score=score,
        )

    async def dual_check(
        self,
        request: LLMRequest,
        model_a: ModelTarget,
        model_b: ModelTarget,
        task: str | TaskCategory = TaskCategory.GENERAL,
    ) -> DualCheckResult:
        """Run one prompt on two models and score how much they agree."""
        response_a, response_b = await self._router.route_multiple(
            request, [model_a, model_b], task, feature="dual_check"
        )

        if not response_a.success and not response_b.success:
            return DualCheckResult(response=response_a, agreement_score=0.0)
        if not response_a.success:
            return DualCheckResult(response=response_b, agreement_score=0.5)
        if not response_b.success:
            return DualCheckResult(response=response_a, agreement_score=0.5)

        return DualCheckResult(
            response=response_a,
            agreement_score=text_similarity(response_a.content, response_b.content),
        )
