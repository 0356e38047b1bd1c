"""
Tests for output validation and JSON repair.

Covers:
1. JSON extraction from fences and leading prose
2. Repair of trailing commas, raw newlines and unclosed brackets
3. Required fields and empty documents
4. Free-text checks (empty, forbidden phrases, warnings only for length)
5. validate_output(): which checks apply to which request
"""

from __future__ import annotations

import json

import pytest

from clinical_router.llm.output_validator import (
    FEATURE_REQUIRED_FIELDS,
    repair_json,
    validate_json,
    validate_output,
    validate_text,
)
from clinical_router.llm.types import LLMRequest, ResponseFormat


class TestValidateJSON:

    def test_clean_object(self):
        result = validate_json('{"plan": "rest"}', ["plan"])
        assert result.valid is True
        assert result.repaired is False
        assert result.warnings == ()

    def test_markdown_fence_stripped(self):
        result = validate_json('Here you go:\n```json\n{"plan": "rest"}\n```')
        assert result.valid is True
        assert result.content == '{"plan": "rest"}'
        assert result.repaired is True

    def test_leading_prose_stripped(self):
        result = validate_json('Sure! {"plan": "rest"}')
        assert result.valid is True
        assert result.content == '{"plan": "rest"}'
        assert "extracted object" in result.warnings[0]

    def test_malformed_json_repaired(self):
        result = validate_json('{"problems": ["sepsis", "AKI",], "overallAssessment": "guarded"')
        assert result.valid is True
        assert json.loads(result.content) == {
            "problems": ["sepsis", "AKI"],
            "overallAssessment": "guarded",
        }
        assert "JSON was malformed and was auto-repaired" in result.warnings

    def test_unrepairable(self):
        result = validate_json("The patient is doing well.")
        assert result.valid is False
        assert result.errors == ("Invalid JSON that could not be repaired",)
        assert result.content == "The patient is doing well."

    def test_missing_and_null_required_fields(self):
        result = validate_json('{"subjective": "cough", "plan": null}', FEATURE_REQUIRED_FIELDS["soap_format"])
        assert result.valid is False
        assert result.errors == (
            "Missing required field: objective",
            "Missing required field: assessment",
            "Missing required field: plan",
        )
        assert result.error_summary.startswith("Missing required field: objective; ")

    def test_array_cannot_carry_required_fields(self):
        result = validate_json('["a"]', ["plan"])
        assert result.valid is False

    @pytest.mark.parametrize("content", ["{}", "[]", "```json\n{}\n```"])
    def test_empty_document(self, content):
        result = validate_json(content)
        assert result.valid is False
        assert "JSON is empty" in result.errors


class TestRepairJSON:

    def test_raw_newline_inside_string(self):
        repaired = repair_json('{"note": "line one\nline two"}')
        assert json.loads(repaired) == {"note": "line one\nline two"}

    def test_closes_nested_brackets_in_order(self):
        assert json.loads(repair_json('{"a": [1, {"b": 2')) == {"a": [1, {"b": 2}]}

    def test_dangling_comma_before_close(self):
        assert json.loads(repair_json('{"a": 1,')) == {"a": 1}

    def test_braces_inside_strings_ignored(self):
        assert json.loads(repair_json('{"a": "{not a brace"')) == {"a": "{not a brace"}

    def test_hopeless_input(self):
        assert repair_json("not json at all") is None


class TestValidateText:

    def test_empty_is_error(self):
        result = validate_text("   ")
        assert result.valid is False
        assert result.errors == ("Content is empty",)

    def test_short_text_only_warns(self):
        result = validate_text("Stable.")
        assert result.valid is True
        assert result.warnings[0].startswith("Content is short (7 chars")

    def test_disclaimer_warns(self):
        result = validate_text("As an AI language model, I suggest repeating the lactate.")
        assert result.valid is True
        assert any("disclaimer" in w for w in result.warnings)

    def test_forbidden_phrase_is_error(self):
        result = validate_text("Patient John Doe is stable today.", must_not_contain=["john doe"])
        assert result.valid is False
        assert result.errors == ('Content contains forbidden text: "john doe"',)


class TestValidateOutput:

    def test_plain_text_without_feature_unchecked(self):
        request = LLMRequest(system_prompt="", user_prompt="u")
        assert validate_output(request, "", None) is None

    def test_json_request_checked(self):
        request = LLMRequest(system_prompt="", user_prompt="u", response_format=ResponseFormat.JSON)
        assert validate_output(request, "nope", None).valid is False

    def test_json_feature_uses_required_fields(self):
        request = LLMRequest(system_prompt="", user_prompt="u")
        result = validate_output(request, '{"problems": []}', "assessment_plan")
        assert result.errors == ("Missing required field: overallAssessment",)

    def test_text_feature_checked(self):
        request = LLMRequest(system_prompt="", user_prompt="u")
        assert validate_output(request, "", "smart_expand").valid is False
        assert validate_output(request, "Expanded text.", "smart_expand").valid is True
