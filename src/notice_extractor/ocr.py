"""
Google Cloud Vision text detection over the REST endpoint.
"""

import base64
import json
import logging
import os
import time
from typing import Optional

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from .config import VISION_ENDPOINT, VISION_LANGUAGE_HINTS
from .exceptions import (
    ConfigurationError,
    EmptyTextError,
    ImageNotFoundError,
    NoTextDetectedError,
    VisionApiError,
)
from .models import OCRResult

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

# 1x1 transparent PNG used as a connectivity probe
PROBE_IMAGE = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


def average_block_confidence(full_text_annotation: Optional[dict]) -> Optional[float]:
    """Mean confidence of every block on every page, or None if none is reported."""
    if not full_text_annotation:
        return None

    confidences = [
        block["confidence"]
        for page in full_text_annotation.get("pages", [])
        for block in page.get("blocks", [])
        if block.get("confidence") is not None
    ]
    if not confidences:
        return None
    return sum(confidences) / len(confidences)


class VisionOCR:
    """Wrapper around the Vision images:annotate endpoint"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        service_account_info: Optional[dict] = None,
        timeout: float = 20.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the OCR client.

        Args:
            api_key: Vision API key, sent as the ``key`` query parameter
            service_account_info: Parsed service-account JSON, used for bearer
                tokens when no API key is given
            timeout: Request timeout in seconds
            session: Optional requests session (tests pass a mock)
        """
        self.api_key = (api_key or "").strip()
        self.credentials = None
        self._auth_request = None
        if not self.api_key and service_account_info:
            self.credentials = service_account.Credentials.from_service_account_info(
                service_account_info,
                scopes=[CLOUD_PLATFORM_SCOPE]
            )
            self._auth_request = GoogleAuthRequest()

        self.endpoint = VISION_ENDPOINT
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings) -> "VisionOCR":
        service_account_info = None
        if not settings.vision_api_key and settings.firebase_service_account_key:
            try:
                service_account_info = json.loads(settings.firebase_service_account_key)
            except ValueError as e:
                raise ConfigurationError(f"FIREBASE_SERVICE_ACCOUNT_KEY is not valid JSON: {e}")
        return cls(
            api_key=settings.vision_api_key,
            service_account_info=service_account_info,
            timeout=settings.request_timeout
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) or self.credentials is not None

    def _auth(self):
        """Return (params, headers) for one request."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            return {"key": self.api_key}, headers

        if self.credentials is None:
            raise ConfigurationError(
                "Google Vision credentials not configured. Set GOOGLE_VISION_API_KEY or FIREBASE_SERVICE_ACCOUNT_KEY",
                code="VISION_CREDENTIALS_MISSING"
            )
        if not self.credentials.valid:
            try:
                self.credentials.refresh(self._auth_request)
            except GoogleAuthError as e:
                raise VisionApiError(f"Failed to refresh Google access token: {e}")
        headers["Authorization"] = f"Bearer {self.credentials.token}"
        return None, headers

    def annotate(self, image_bytes: bytes) -> dict:
        """Send one image and return the first annotate response."""
        params, headers = self._auth()
        payload = {
            "requests": [
                {
                    "image": {"content": base64.b64encode(image_bytes).decode("utf-8")},
                    "features": [
                        {"type": "TEXT_DETECTION", "maxResults": 1},
                        {"type": "DOCUMENT_TEXT_DETECTION", "maxResults": 1},
                    ],
                    "imageContext": {"languageHints": list(VISION_LANGUAGE_HINTS)},
                }
            ]
        }

        try:
            response = self.session.post(
                self.endpoint,
                params=params,
                headers=headers,
                json=payload,
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error("Google Vision request failed: %s", e)
            raise VisionApiError(f"Vision API request failed: {e}")
        except ValueError as e:
            raise VisionApiError(f"Vision API returned invalid JSON: {e}")

        responses = data.get("responses") or [{}]
        result = responses[0]
        if result.get("error"):
            error = result["error"]
            logger.error("Vision API error: %s", error)
            raise VisionApiError(
                f"Vision API error: {error.get('message', 'unknown error')}",
                details={"code": error.get("code"), "message": error.get("message")}
            )
        return result

    def extract_text(self, image_path: str) -> OCRResult:
        """
        Run text detection on an image already written to disk.

        Raises:
            ImageNotFoundError: If the path does not exist
            NoTextDetectedError: If Vision returns no text annotations
            EmptyTextError: If the detected text is only whitespace
            VisionApiError: On any upstream failure
        """
        start_time = time.monotonic()

        if not os.path.exists(image_path):
            raise ImageNotFoundError("Image file not found")

        with open(image_path, "rb") as f:
            image_bytes = f.read()

        logger.info("Calling Google Cloud Vision API for %s", os.path.basename(image_path))
        result = self.annotate(image_bytes)

        text_annotations = result.get("textAnnotations") or []
        if not text_annotations:
            raise NoTextDetectedError("No text detected in the image")

        raw_text = text_annotations[0].get("description") or ""
        if not raw_text.strip():
            raise EmptyTextError("Empty text detected in the image")

        processing_time_ms = int((time.monotonic() - start_time) * 1000)
        logger.info("OCR completed. Text length: %d characters", len(raw_text))

        return OCRResult(
            raw_text=raw_text,
            confidence=average_block_confidence(result.get("fullTextAnnotation")),
            annotations_count=len(text_annotations),
            processing_time_ms=processing_time_ms
        )

    def test_connection(self) -> dict:
        """Send a blank probe image to check credentials and reachability."""
        try:
            self.annotate(PROBE_IMAGE)
            return {"success": True, "message": "Google Cloud Vision API connection successful"}
        except (ConfigurationError, VisionApiError) as e:
            logger.error("Vision API connection test failed: %s", e)
            return {"success": False, "message": "Google Cloud Vision API connection failed", "error": str(e)}
