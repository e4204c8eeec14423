"""
NeuroSynth DCS - LLM Output Parsing Unit Tests
==============================================
"""

import json
from typing import List

import pytest
from pydantic import BaseModel

from dcsynth.shared.exceptions import LLMParsingError
from dcsynth.shared.parsing import (
    coerce_structured_payload,
    extract_and_parse_json,
    extract_json_string,
    find_json_boundaries,
    strip_markdown_fences,
)


class ProcedureList(BaseModel):
    procedures: List[str]


class TestRobustParsing:
    """Tests for dcsynth/shared/parsing.py"""

    def test_strip_markdown_fences(self):
        """Should strip markdown code fences from JSON."""
        assert strip_markdown_fences('```json\n{"key": "value"}\n```') == '{"key": "value"}'
        assert strip_markdown_fences("```\n[1, 2]\n```") == "[1, 2]"

    def test_strip_markdown_fences_surrounding_whitespace(self):
        """Closing fence and trailing newlines leave nothing behind."""
        assert strip_markdown_fences('\n```JSON\n{"a": 1}\n```\n\n') == '{"a": 1}'
        assert strip_markdown_fences('{"a": 1}') == '{"a": 1}'

    def test_extract_json_string_fenced_after_preamble(self):
        raw = 'Here is the extraction:\n```json\n{"procedures": []}\n```\nDone.'
        assert extract_json_string(raw) == '{"procedures": []}'

    def test_find_json_boundaries(self):
        text = 'Extraction: {"procedures": []} done'
        start, end = find_json_boundaries(text)
        assert text[start:end + 1] == '{"procedures": []}'

    def test_find_json_boundaries_array_first(self):
        text = 'Dates: ["2025-01-10", {"a": 1}]'
        start, end = find_json_boundaries(text)
        assert text[start:end + 1] == '["2025-01-10", {"a": 1}]'

    def test_no_json(self):
        assert find_json_boundaries("nothing to see") == (-1, -1)
        with pytest.raises(LLMParsingError):
            extract_json_string("nothing to see")

    def test_extract_json_string_with_preamble(self):
        """Should extract JSON ignoring preamble and postscript."""
        raw = 'Here is the JSON:\n{"procedures": ["EVD"]}\nLet me know if you need more.'
        assert json.loads(extract_json_string(raw)) == {"procedures": ["EVD"]}

    def test_extract_and_parse_json_with_model(self):
        result = extract_and_parse_json('```json\n{"procedures": ["EVD", "coiling"]}\n```', ProcedureList)
        assert result.procedures == ["EVD", "coiling"]

    @pytest.mark.parametrize("raw", [
        '{"procedures": ["EVD",]}',
        '{"procedures": "EVD"}',
        '{"other": 1}',
    ])
    def test_invalid_payloads(self, raw):
        with pytest.raises(LLMParsingError):
            extract_and_parse_json(raw, ProcedureList)


class TestCoerceStructuredPayload:
    """Tests for coerce_structured_payload."""

    def test_accepts_model_instance(self):
        instance = ProcedureList(procedures=["EVD"])
        assert coerce_structured_payload(instance, ProcedureList) is instance

    def test_accepts_dict(self):
        assert coerce_structured_payload({"procedures": []}, ProcedureList).procedures == []

    def test_invalid_dict(self):
        with pytest.raises(LLMParsingError):
            coerce_structured_payload({"procedures": None}, ProcedureList)

    def test_unsupported_type(self):
        with pytest.raises(LLMParsingError):
            coerce_structured_payload(42, ProcedureList)
