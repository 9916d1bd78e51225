"""
Tests for the Cloud Vision OCR client. The HTTP session is mocked.
"""

from unittest.mock import MagicMock

import pytest
import requests

from notice_extractor.config import Settings
from notice_extractor.exceptions import (
    ConfigurationError,
    EmptyTextError,
    ImageNotFoundError,
    NoTextDetectedError,
    VisionApiError,
)
from notice_extractor.ocr import VisionOCR, average_block_confidence

NOTICE_TEXT = "જાહેર નોટીસ\nમોજે ગામ રીબડાના રેવન્યુ સર્વે નં.૩૬૭"


def _session(payload):
    session = MagicMock()
    session.post.return_value.json.return_value = payload
    return session


def _vision_payload(text=NOTICE_TEXT, confidences=(0.9, 0.7)):
    return {
        "responses": [
            {
                "textAnnotations": [
                    {"description": text},
                    {"description": "જાહેર"},
                ],
                "fullTextAnnotation": {
                    "pages": [{"blocks": [{"confidence": c} for c in confidences]}]
                },
            }
        ]
    }


@pytest.fixture
def image_path(tmp_path):
    path = tmp_path / "notice.jpg"
    path.write_bytes(b"\xff\xd8\xff fake jpeg")
    return str(path)


class TestAverageBlockConfidence:
    def test_mean_over_blocks(self):
        annotation = {"pages": [{"blocks": [{"confidence": 0.9}, {"confidence": 0.7}]}]}
        assert average_block_confidence(annotation) == pytest.approx(0.8)

    def test_none_without_confidences(self):
        assert average_block_confidence(None) is None
        assert average_block_confidence({"pages": [{"blocks": [{}]}]}) is None


class TestVisionOCR:
    def test_extract_text(self, image_path):
        session = _session(_vision_payload())
        ocr = VisionOCR(api_key="key", session=session)

        result = ocr.extract_text(image_path)

        assert result.raw_text == NOTICE_TEXT
        assert result.confidence == pytest.approx(0.8)
        assert result.annotations_count == 2
        assert result.to_dict()["text_length"] == len(NOTICE_TEXT)

    def test_request_shape(self, image_path):
        session = _session(_vision_payload())
        VisionOCR(api_key="key", session=session).extract_text(image_path)

        _, kwargs = session.post.call_args
        assert kwargs["params"] == {"key": "key"}
        request = kwargs["json"]["requests"][0]
        assert {f["type"] for f in request["features"]} == {"TEXT_DETECTION", "DOCUMENT_TEXT_DETECTION"}
        assert request["imageContext"]["languageHints"] == ["gu", "en"]

    def test_missing_image(self, tmp_path):
        ocr = VisionOCR(api_key="key", session=MagicMock())
        with pytest.raises(ImageNotFoundError):
            ocr.extract_text(str(tmp_path / "missing.jpg"))

    def test_no_text_detected(self, image_path):
        ocr = VisionOCR(api_key="key", session=_session({"responses": [{}]}))
        with pytest.raises(NoTextDetectedError) as exc_info:
            ocr.extract_text(image_path)
        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "NO_TEXT_DETECTED"

    def test_whitespace_text(self, image_path):
        ocr = VisionOCR(api_key="key", session=_session(_vision_payload(text="  \n ")))
        with pytest.raises(EmptyTextError):
            ocr.extract_text(image_path)

    def test_api_error_in_response(self, image_path):
        payload = {"responses": [{"error": {"code": 7, "message": "API key not valid"}}]}
        ocr = VisionOCR(api_key="key", session=_session(payload))
        with pytest.raises(VisionApiError) as exc_info:
            ocr.extract_text(image_path)
        assert exc_info.value.details == {"code": 7, "message": "API key not valid"}

    def test_transport_error(self, image_path):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("unreachable")
        ocr = VisionOCR(api_key="key", session=session)
        with pytest.raises(VisionApiError):
            ocr.extract_text(image_path)

    def test_missing_credentials(self, image_path):
        ocr = VisionOCR(session=MagicMock())
        assert not ocr.is_configured
        with pytest.raises(ConfigurationError) as exc_info:
            ocr.extract_text(image_path)
        assert exc_info.value.code == "VISION_CREDENTIALS_MISSING"

    def test_from_settings_rejects_invalid_service_account_json(self):
        settings = Settings(firebase_service_account_key="{not json")
        with pytest.raises(ConfigurationError):
            VisionOCR.from_settings(settings)

    def test_connection_probe(self):
        ok = VisionOCR(api_key="key", session=_session({"responses": [{}]}))
        assert ok.test_connection()["success"]

        failing = VisionOCR(session=MagicMock())
        assert not failing.test_connection()["success"]
