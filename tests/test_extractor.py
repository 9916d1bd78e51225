"""
Tests for Gemini extraction, refinement and response parsing.

The OpenAI-compatible client is a MagicMock; no request leaves the process.
"""

import json
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from notice_extractor.exceptions import AIServiceError, ConfigurationError, ParseError
from notice_extractor.extractor import (
    NoticeExtractor,
    parse_extraction_response,
    parse_json_response,
    strip_code_fences,
)
from notice_extractor.models import NoticeFields

RAW_TEXT = "જાહેર નોટીસ\nમોજે ગામ રીબડાના રેવન્યુ સર્વે નં.૩૬૭\nતારીખ:-૧૮-૦૭-૨૦૨૫"

EXTRACTION_JSON = {
    "success": True,
    "data": {
        "village_name": "ગામ રીબડાના રેવન્યુ સર્વે નં ૩૬૭",
        "survey_number": "367",
        "buyer_name": "રમેશભાઈ પટેલ",
        "seller_name": "સુરેશભાઈ શાહ",
        "notice_date": "18/07/2025",
        "district": "Rajkot",
    },
    "confidence_score": 0.85,
    "extraction_notes": "clear scan",
}


def _completion(text):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = text
    return response


def _extractor(*responses):
    client = MagicMock()
    client.chat.completions.create.side_effect = [_completion(r) for r in responses]
    return NoticeExtractor(client=client), client


def _no_choices():
    response = MagicMock()
    response.choices = []
    return response


def _status_error(cls, status):
    request = httpx.Request("POST", "https://generativelanguage.googleapis.com/v1beta/openai/chat/completions")
    return cls("upstream said no", response=httpx.Response(status, request=request), body=None)


class TestResponseParsing:
    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'

    def test_parse_json_response_rejects_non_objects(self):
        with pytest.raises(ParseError):
            parse_json_response("[1, 2]")
        with pytest.raises(ParseError):
            parse_json_response("no json here")

    def test_fenced_json(self):
        result = parse_extraction_response("```json\n" + json.dumps(EXTRACTION_JSON) + "\n```")
        assert result.fields.village_name == "રીબડા"
        assert result.fields.village_name_cleaned == "રીબડા"
        assert result.fields.survey_number == "367"
        assert result.confidence == 0.85
        assert result.notes == "clear scan"

    def test_missing_confidence_defaults_by_parse_path(self):
        payload = {"data": {"village_name": "શાપર"}}
        assert parse_extraction_response(json.dumps(payload)).confidence == 0.5
        embedded = "Here is the result: " + json.dumps(payload) + " hope it helps"
        assert parse_extraction_response(embedded).confidence == 0.3

    def test_unparseable_response_never_raises(self):
        result = parse_extraction_response("Sorry, I cannot read this notice.")
        assert result.confidence == 0.1
        assert result.fields == NoticeFields()
        assert "manual review" in result.notes

    def test_confidence_is_clamped(self):
        payload = dict(EXTRACTION_JSON, confidence_score=3)
        assert parse_extraction_response(json.dumps(payload)).confidence == 1.0


class TestNoticeExtractor:
    def test_extract(self):
        extractor, client = _extractor(json.dumps(EXTRACTION_JSON))

        result = extractor.extract(RAW_TEXT)

        assert result.fields.village_name == "રીબડા"
        _, kwargs = client.chat.completions.create.call_args
        assert kwargs["temperature"] == 0.1
        assert RAW_TEXT in kwargs["messages"][1]["content"]

    def test_extract_reply_without_choices(self):
        client = MagicMock()
        client.chat.completions.create.return_value = _no_choices()
        with pytest.raises(AIServiceError, match="no choices"):
            NoticeExtractor(client=client).extract(RAW_TEXT)

    def test_extract_without_key(self):
        extractor = NoticeExtractor()
        assert not extractor.is_configured
        with pytest.raises(ConfigurationError) as exc_info:
            extractor.extract(RAW_TEXT)
        assert exc_info.value.code == "GEMINI_API_KEY_MISSING"

    def test_rate_limit_maps_to_quota_error(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = _status_error(openai.RateLimitError, 429)
        with pytest.raises(AIServiceError) as exc_info:
            NoticeExtractor(client=client).extract(RAW_TEXT)
        assert exc_info.value.code == "GEMINI_QUOTA_EXCEEDED"
        assert exc_info.value.status_code == 429

    def test_bad_key_maps_to_invalid_key_error(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = _status_error(openai.AuthenticationError, 401)
        with pytest.raises(AIServiceError) as exc_info:
            NoticeExtractor(client=client).extract(RAW_TEXT)
        assert exc_info.value.code == "GEMINI_API_KEY_INVALID"

    def test_missing_prompts_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            NoticeExtractor(prompts_file=str(tmp_path / "missing.yaml"))

    def test_missing_template_variable(self):
        extractor, _ = _extractor()
        with pytest.raises(ConfigurationError):
            extractor._get_prompt("extraction", "user_template")


class TestRefine:
    def setup_method(self):
        self.original = NoticeFields(village_name="રીબડાના", survey_number="36", notice_date="18/07/2025", district="Rajkot")

    def test_overlays_refined_values(self):
        refined = {
            "village_name": "રીબડા",
            "survey_number": "367",
            "notice_date": None,
            "confidence_score": 0.9,
            "refinement_notes": "survey number completed",
            "latitude": 21.95,
            "longitude": 70.78,
        }
        extractor, _ = _extractor(json.dumps(refined))

        result = extractor.refine(self.original, RAW_TEXT)

        assert result.applied
        assert result.fields.village_name == "રીબડા"
        assert result.fields.survey_number == "367"
        assert result.fields.notice_date == "18/07/2025"
        assert result.fields.district == "Rajkot"
        assert result.confidence == 0.9
        assert result.coordinates.source == "gemini_refinement"
        assert (result.coordinates.latitude, result.coordinates.longitude) == (21.95, 70.78)

        data = result.as_extracted_data()
        assert data["original_survey_number"] == "36"
        assert data["refinement_applied"] is True

    def test_unparseable_refinement_keeps_original(self):
        extractor, _ = _extractor("I think the village is Ribda")

        result = extractor.refine(self.original, RAW_TEXT)

        assert not result.applied
        assert result.fields is self.original
        assert result.error
        assert result.as_extracted_data()["refinement_error"] == result.error

    def test_upstream_failure_keeps_original(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", "https://example.invalid")
        )
        result = NoticeExtractor(client=client).refine(self.original, RAW_TEXT)
        assert not result.applied
        assert result.coordinates is None

    def test_without_key_keeps_original(self):
        result = NoticeExtractor().refine(self.original, RAW_TEXT)
        assert not result.applied

    def test_reply_without_choices_keeps_original(self):
        client = MagicMock()
        client.chat.completions.create.return_value = _no_choices()

        result = NoticeExtractor(client=client).refine(self.original, RAW_TEXT)

        assert not result.applied
        assert result.fields is self.original
        assert result.error == "Gemini returned no choices"

    @pytest.mark.parametrize("latitude, longitude", [
        ("NaN", 70.78),
        (21.95, "inf"),
        (95.0, 70.78),
        (21.95, -181.0),
    ])
    def test_unusable_coordinates_are_dropped(self, latitude, longitude):
        refined = {"village_name": "રીબડા", "confidence_score": 0.9, "latitude": latitude, "longitude": longitude}
        extractor, _ = _extractor(json.dumps(refined))

        result = extractor.refine(self.original, RAW_TEXT)

        assert result.applied
        assert result.fields.village_name == "રીબડા"
        assert result.coordinates is None


class TestEstimateCoordinates:
    def test_estimate(self):
        extractor, _ = _extractor('{"latitude": 21.95, "longitude": 70.78, "confidence_score": 0.7, "taluka": "Gondal"}')
        candidate = extractor.estimate_coordinates("રીબડા", "Rajkot")
        assert candidate.source == "gemini"
        assert candidate.confidence == 0.7
        assert candidate.district == "Rajkot"
        assert candidate.taluka == "Gondal"

    def test_missing_coordinates(self):
        extractor, _ = _extractor('{"latitude": null, "longitude": null}')
        assert extractor.estimate_coordinates("રીબડા", "Rajkot") is None

    def test_non_finite_coordinates(self):
        extractor, _ = _extractor('{"latitude": "Infinity", "longitude": 70.78}')
        assert extractor.estimate_coordinates("રીબડા", "Rajkot") is None

    def test_boundary_coordinates_are_kept(self):
        extractor, _ = _extractor('{"latitude": -90, "longitude": 180}')
        candidate = extractor.estimate_coordinates("રીબડા", "Rajkot")
        assert (candidate.latitude, candidate.longitude) == (-90.0, 180.0)

    def test_no_village(self):
        extractor, client = _extractor()
        assert extractor.estimate_coordinates("", "Rajkot") is None
        client.chat.completions.create.assert_not_called()


class TestConnection:
    def test_working(self):
        extractor, _ = _extractor("API Working")
        assert extractor.test_connection()["success"]

    def test_not_configured(self):
        result = NoticeExtractor().test_connection()
        assert not result["success"]
        assert result["code"] == "GEMINI_API_KEY_MISSING"
