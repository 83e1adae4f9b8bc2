"""
Unit Tests — Response parsing + field validation
═════════════════════════════════════════════════

Coverage targets:
  ✅ JSON located inside ```json fences, bare, or surrounded by prose
  ✅ Braces inside string values do not break object matching
  ✅ postalcode / postal_code both accepted; numbers coerced to strings
  ✅ Non-numeric confidence scores dropped
  ✅ No JSON / invalid JSON / non-object → MalformedResponse (never raises)
  ✅ Date, postal code, time and stamp format checks
  ✅ postal code "1234" and date "2024-01-01" force review
  ✅ Review threshold: 0.69 reviewed, 0.70 not
  ✅ Overall confidence = mean of numeric scores, 0.5 when none
  ✅ Suggested file name from date, name and signed flag
  ✅ Prompt selection: multi-page wins over handwritten
"""

from __future__ import annotations

import pytest

from docintake.extraction.parsing import (
    MalformedResponse,
    ParsedExtraction,
    find_json_object,
    parse_classification_response,
    parse_extraction_response,
)
from docintake.extraction.prompts import (
    EXTRACTION_PROMPT,
    HANDWRITTEN_PROMPT,
    MULTI_PAGE_PROMPT,
    get_extraction_prompt,
)
from docintake.extraction.validation import (
    is_valid_date,
    is_valid_postal_code,
    is_valid_stamp,
    is_valid_time,
    needs_review,
    overall_confidence,
    suggest_file_name,
    validate_fields,
)
from docintake.models.documents import DocumentType
from tests.conftest import extraction_json


# ─────────────────────────────────────────────────────────────────────────────
# JSON location
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.extraction
class TestFindJsonObject:

    def test_fenced_block(self):
        text = 'Here you go:\n```json\n{"name": "A"}\n```\nThanks'
        assert find_json_object(text) == '{"name": "A"}'

    def test_bare_object_with_prose(self):
        text = 'Result: {"a": {"b": 1}} -- end'
        assert find_json_object(text) == '{"a": {"b": 1}}'

    def test_braces_inside_strings(self):
        text = '{"address": "Weg {3}", "city": "K}oln"}'
        assert find_json_object(text) == text

    def test_no_object(self):
        assert find_json_object("nothing here") is None
        assert find_json_object("") is None


# ─────────────────────────────────────────────────────────────────────────────
# Extraction response
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.extraction
class TestParseExtractionResponse:

    def test_well_formed_response(self):
        parsed = parse_extraction_response(extraction_json())

        assert isinstance(parsed, ParsedExtraction)
        fields = parsed.payload.fields()
        assert fields["name"] == "Anna Schmidt"
        assert fields["postal_code"] == "10115"
        assert fields["signed"] is True
        assert parsed.payload.confidence_scores["postal_code"] == pytest.approx(0.92)
        assert "postalcode" in parsed.raw

    def test_snake_case_postal_code_and_numeric_value(self):
        parsed = parse_extraction_response('{"postal_code": 10115, "name": ""}')

        assert isinstance(parsed, ParsedExtraction)
        assert parsed.payload.postal_code == "10115"
        assert parsed.payload.name is None

    def test_non_numeric_scores_dropped(self):
        parsed = parse_extraction_response(
            '{"name": "A", "confidence_scores": {"name": "high", "city": 0.4, "signed": true}}'
        )

        assert parsed.payload.confidence_scores == {"city": 0.4}

    def test_unknown_keys_ignored(self):
        parsed = parse_extraction_response('{"name": "A", "favourite_colour": "blue"}')

        assert isinstance(parsed, ParsedExtraction)
        assert parsed.payload.name == "A"

    @pytest.mark.parametrize(
        "text",
        [
            "The document is unreadable.",
            '{"name": "A", }',
            '```json\n["not", "an", "object"]\n```',
            '{"confidence_scores": "none"}',
        ],
    )
    def test_malformed_never_raises(self, text):
        parsed = parse_extraction_response(text)

        assert isinstance(parsed, MalformedResponse)
        assert parsed.raw_text == text
        assert parsed.reason


@pytest.mark.unit
@pytest.mark.extraction
class TestParseClassificationResponse:

    def test_known_type(self):
        assert parse_classification_response('{"type": "scanned", "confidence": 0.6}') == (
            DocumentType.SCANNED, 0.6,
        )

    def test_missing_confidence_defaults(self):
        assert parse_classification_response('{"type": "MIXED"}') == (DocumentType.MIXED, 0.5)

    def test_no_json_raises(self):
        with pytest.raises(ValueError):
            parse_classification_response("typed, probably")


# ─────────────────────────────────────────────────────────────────────────────
# Field validation
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.extraction
class TestFieldFormats:

    @pytest.mark.parametrize("value, ok", [
        ("15.03.2024", True), ("2024-01-01", False), ("1.3.2024", False), ("15/03/2024", False),
        ("15.03.2024\n", False),
    ])
    def test_date(self, value, ok):
        assert is_valid_date(value) is ok

    @pytest.mark.parametrize("value, ok", [
        ("10115", True), ("1234", False), ("101155", False), ("1011a", False), ("10115\n", False),
    ])
    def test_postal_code(self, value, ok):
        assert is_valid_postal_code(value) is ok

    @pytest.mark.parametrize("value, ok", [("09:30", True), ("9:30", False), ("0930", False), ("09:30\n", False)])
    def test_time(self, value, ok):
        assert is_valid_time(value) is ok

    @pytest.mark.parametrize("value, ok", [
        ("BB", True), ("AB, FK", True), ("s", True), ("XX", False), ("BB,XX", False),
    ])
    def test_stamp(self, value, ok):
        assert is_valid_stamp(value) is ok


@pytest.mark.unit
@pytest.mark.extraction
class TestReview:

    def test_clean_fields_have_no_issues(self):
        fields = {"birthday": "01.02.1980", "date": "15.03.2024", "postal_code": "10115", "time": "09:30"}
        assert validate_fields(fields, {"name": 0.9}) == []

    def test_bad_postal_code_forces_review(self):
        issues = validate_fields({"postal_code": "1234"}, {"postal_code": 0.99})

        assert issues == ["Postal code format invalid: 1234"]
        assert needs_review(issues, {"postal_code": 0.99}) is True

    def test_iso_date_forces_review(self):
        issues = validate_fields({"date": "2024-01-01"}, {})

        assert issues == ["Date format invalid: 2024-01-01"]
        assert needs_review(issues, {}) is True

    def test_invalid_birthday_and_time_reported(self):
        issues = validate_fields({"birthday": "1980", "time": "noon"}, {})

        assert "Birthday format invalid: 1980" in issues
        assert "Time format invalid: noon" in issues

    def test_trailing_newline_is_rejected(self):
        issues = validate_fields({"postal_code": "10115\n", "time": "09:30\n"}, {})

        assert len(issues) == 2
        assert needs_review(issues, {}) is True

    def test_low_confidence_note_below_half(self):
        issues = validate_fields({}, {"city": 0.4, "name": 0.6})

        assert issues == ["Low confidence for city: 0.4"]

    def test_threshold_boundary(self):
        assert needs_review([], {"name": 0.69}) is True
        assert needs_review([], {"name": 0.70}) is False

    def test_custom_threshold(self):
        assert needs_review([], {"name": 0.85}, threshold=0.9) is True

    def test_no_scores_no_issues_no_review(self):
        assert needs_review([], {}) is False

    def test_overall_confidence_is_mean(self):
        assert overall_confidence({"a": 0.9, "b": 0.7}) == pytest.approx(0.8)

    def test_overall_confidence_defaults_to_half(self):
        assert overall_confidence({}) == 0.5
        assert overall_confidence(None) == 0.5


@pytest.mark.unit
@pytest.mark.extraction
class TestSuggestFileName:

    def test_full_name(self):
        fields = {"date": "15/03/2024", "name": "Dr. Anna-Maria Schmidt", "signed": True}
        assert suggest_file_name(fields) == "15-03-2024_Dr_AnnaMaria_signed.pdf"

    def test_fallback(self):
        assert suggest_file_name({}) == "document.pdf"

    def test_unsigned_name_only(self):
        assert suggest_file_name({"name": "Jan Kowalski", "signed": False}) == "Jan_Kowalski.pdf"


@pytest.mark.unit
@pytest.mark.extraction
class TestPromptSelection:

    def test_default(self):
        assert get_extraction_prompt(False, False) == EXTRACTION_PROMPT

    def test_handwritten(self):
        assert get_extraction_prompt(True, False) == HANDWRITTEN_PROMPT

    def test_multi_page_wins(self):
        assert get_extraction_prompt(True, True) == MULTI_PAGE_PROMPT
        assert get_extraction_prompt(False, True) == MULTI_PAGE_PROMPT
