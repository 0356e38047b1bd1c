"""
Output validation and repair for successful LLM responses.

The router runs validate_output() on every successful attempt before
returning it:

- JSON output (response_format=json, or a feature with required fields)
  is extracted from markdown fences or leading prose, repaired when
  malformed (trailing commas, raw newlines inside strings, unclosed
  brackets) and checked for required fields and emptiness.
- Text output for a named feature must not be empty and must not contain
  forbidden phrases. Disclaimer boilerplate and odd lengths only produce
  warnings.

An invalid result makes the router treat the attempt as failed and move
on to the next candidate. A repaired result replaces the response
content.

Usage:
    result = validate_json('```json\\n{"plan": "rest",}\\n```', ["plan"])
    if result.valid:
        data = json.loads(result.content)
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from clinical_router.llm.types import LLMRequest

# Required top-level keys of each JSON-producing clinical feature
FEATURE_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "differential_diagnosis": (
        "differentials",
        "mostLikely",
        "criticalToRuleOut",
        "suggestedWorkup",
    ),
    "documentation_check": ("overallScore", "gaps", "strengths", "suggestions"),
    "soap_format": ("subjective", "objective", "assessment", "plan"),
    "assessment_plan": ("problems", "overallAssessment"),
}

TEXT_MIN_LENGTH = 20
TEXT_MAX_LENGTH = 50_000

_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_DISCLAIMER_PATTERNS = (
    re.compile(r"I don't have (?:access to|information about) (?:the|this) patient", re.I),
    re.compile(r"As an AI(?: language model)?", re.I),
    re.compile(r"I cannot (?:provide|give) medical (?:advice|diagnosis)", re.I),
    re.compile(r"Please consult (?:a|your) (?:doctor|physician|healthcare)", re.I),
)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one response body."""

    valid: bool
    content: str
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    repaired: bool = False

    @property
    def error_summary(self) -> str:
        return "; ".join(self.errors)


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def extract_json_text(content: str) -> tuple[str, list[str]]:
    """Strip markdown fences and leading prose around a JSON document."""
    warnings: list[str] = []
    text = content.strip()

    fenced = _CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    if not text.startswith(("{", "[")):
        starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
        if starts:
            warnings.append("JSON was preceded by non-JSON text; extracted object")
            text = text[min(starts):]

    return text, warnings


def repair_json(text: str) -> Optional[str]:
    """
    Fix the malformations weaker models commonly produce.

    Returns the repaired document, or None when it still does not parse.
    """
    text = _TRAILING_COMMA.sub(r"\1", text)

    out: list[str] = []
    closers: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ch == "\n":
                out.append("\\n")
                continue
        elif ch == '"':
            in_string = True
        elif ch == "{":
            closers.append("}")
        elif ch == "[":
            closers.append("]")
        elif ch in "}]" and closers and closers[-1] == ch:
            closers.pop()
        out.append(ch)

    if in_string:
        out.append('"')
    out.extend(reversed(closers))
    repaired = _TRAILING_COMMA.sub(r"\1", "".join(out))

    try:
        json.loads(repaired)
    except ValueError:
        return None
    return repaired


def validate_json(
    content: str, required_fields: Sequence[str] = ()
) -> ValidationResult:
    """Check that content holds a non-empty JSON document with required fields."""
    text, warnings = extract_json_text(content)
    repaired = False

    try:
        parsed = json.loads(text)
    except ValueError:
        fixed = repair_json(text)
        if fixed is None:
            return ValidationResult(
                valid=False,
                content=content,
                errors=("Invalid JSON that could not be repaired",),
                warnings=tuple(warnings),
            )
        parsed = json.loads(fixed)
        text = fixed
        repaired = True
        warnings.append("JSON was malformed and was auto-repaired")

    errors: list[str] = []
    if required_fields:
        if isinstance(parsed, dict):
            for name in required_fields:
                if parsed.get(name) is None:
                    errors.append(f"Missing required field: {name}")
        else:
            errors.append("Expected a JSON object with required fields")

    if parsed == {} or parsed == []:
        errors.append("JSON is empty")

    return ValidationResult(
        valid=not errors,
        content=text,
        errors=tuple(errors),
        warnings=tuple(warnings),
        repaired=repaired or text != content,
    )


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------

def validate_text(
    content: str,
    *,
    min_length: int = TEXT_MIN_LENGTH,
    max_length: int = TEXT_MAX_LENGTH,
    must_not_contain: Sequence[str] = (),
) -> ValidationResult:
    """
    Check free-text output.

    Empty content and forbidden phrases are errors. Length outside the
    bounds and AI disclaimer boilerplate are warnings only.
    """
    stripped = content.strip()
    if not stripped:
        return ValidationResult(valid=False, content=content, errors=("Content is empty",))

    errors: list[str] = []
    warnings: list[str] = []

    if len(stripped) < min_length:
        warnings.append(f"Content is short ({len(stripped)} chars, expected {min_length}+)")
    if len(content) > max_length:
        warnings.append(f"Content exceeds {max_length} chars ({len(content)})")

    for pattern in _DISCLAIMER_PATTERNS:
        if pattern.search(content):
            warnings.append(f"Response contains disclaimer pattern: {pattern.pattern}")

    lowered = content.lower()
    for phrase in must_not_contain:
        if phrase.lower() in lowered:
            errors.append(f'Content contains forbidden text: "{phrase}"')

    return ValidationResult(
        valid=not errors,
        content=content,
        errors=tuple(errors),
        warnings=tuple(warnings),
    )


# ---------------------------------------------------------------------------
# Router hook
# ---------------------------------------------------------------------------

def validate_output(
    request: LLMRequest, content: str, feature: Optional[str] = None
) -> Optional[ValidationResult]:
    """
    Validate a successful response for the request that produced it.

    Returns None when nothing applies: a non-JSON request with no
    feature name is passed through unchecked.
    """
    required = FEATURE_REQUIRED_FIELDS.get(feature or "", ())
    if required or request.wants_json:
        return validate_json(content, required)
    if feature:
        return validate_text(content)
    return None
