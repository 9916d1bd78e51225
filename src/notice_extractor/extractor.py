"""
Gemini-backed field extraction for Gujarati property notices.

Gemini is called through its OpenAI-compatible endpoint, so the regular
``openai`` client is used with a different base URL.
"""

import json
import logging
import math
import re
import time
from dataclasses import replace
from typing import Any, Dict, Optional

import openai
import yaml
from openai import OpenAI

from .config import GEMINI_BASE_URL, GEMINI_MODEL, PROMPTS_FILE
from .exceptions import AIServiceError, ConfigurationError, ParseError, UpstreamServiceError
from .models import CoordinateCandidate, ExtractionResult, NoticeFields, RefinementResult
from .text_cleaner import postprocess_village_name

logger = logging.getLogger(__name__)

FENCED_CONFIDENCE = 0.5
EMBEDDED_CONFIDENCE = 0.3
UNPARSED_CONFIDENCE = 0.1

_OPENING_FENCE = re.compile(r"^```(?:json)?\s*")
_CLOSING_FENCE = re.compile(r"\s*```$")
_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    text = text.strip()
    text = _OPENING_FENCE.sub("", text)
    text = _CLOSING_FENCE.sub("", text)
    return text.strip()


def parse_json_response(text: str) -> Dict[str, Any]:
    """
    Parse a fenced or bare JSON object.

    Raises:
        ParseError: If the text is not a JSON object
    """
    try:
        data = json.loads(strip_code_fences(text or ""))
    except ValueError as e:
        raise ParseError(f"Response is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ParseError("Response JSON is not an object")
    return data


def clamp_confidence(value, default: float) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        confidence = default
    return max(0.0, min(1.0, confidence))


def _coordinate(value, limit: float) -> Optional[float]:
    """A finite coordinate within +/- ``limit`` degrees, otherwise None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        coordinate = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(coordinate) or abs(coordinate) > limit:
        return None
    return coordinate


def _with_clean_village(fields: NoticeFields) -> NoticeFields:
    village = postprocess_village_name(fields.village_name)
    return replace(fields, village_name=village, village_name_cleaned=village)


def _build_extraction(data: Dict[str, Any], default_confidence: float, raw_response: str) -> ExtractionResult:
    payload = data.get("data") if isinstance(data.get("data"), dict) else data
    confidence = data.get("confidence_score", payload.get("confidence_score", data.get("confidence")))
    notes = data.get("extraction_notes") or data.get("notes") or ""
    return ExtractionResult(
        fields=_with_clean_village(NoticeFields.from_dict(payload)),
        confidence=clamp_confidence(confidence, default_confidence),
        notes=notes,
        raw_response=raw_response
    )


def parse_extraction_response(text: str) -> ExtractionResult:
    """
    Turn an extraction response into fields without ever raising.

    Tries the whole (fence-stripped) text first, then the first ``{...}``
    block inside it, and finally gives up with every field empty and a
    confidence of 0.1.
    """
    text = text or ""
    try:
        return _build_extraction(parse_json_response(text), FENCED_CONFIDENCE, text)
    except ParseError:
        logger.warning("Extraction response is not plain JSON, searching for an embedded object")

    match = _JSON_BLOCK.search(text)
    if match:
        try:
            return _build_extraction(parse_json_response(match.group(0)), EMBEDDED_CONFIDENCE, text)
        except ParseError:
            logger.warning("Embedded JSON object could not be parsed")

    logger.error("Failed to parse extraction response: %.200s", text)
    return ExtractionResult(
        fields=NoticeFields(),
        confidence=UNPARSED_CONFIDENCE,
        notes="Failed to parse AI response, manual review required",
        raw_response=text
    )


class NoticeExtractor:
    """Extracts and refines notice fields with Gemini"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = GEMINI_MODEL,
        base_url: str = GEMINI_BASE_URL,
        prompts_file: Optional[str] = None,
        client=None,
        timeout: float = 60.0
    ):
        """
        Initialize the extractor.

        Args:
            api_key: Gemini API key (GEMINI_API_KEY)
            model: Gemini model name
            base_url: OpenAI-compatible endpoint for Gemini
            prompts_file: Path to prompts YAML file (default: config/prompts.yaml)
            client: Pre-built OpenAI-compatible client, used as-is
            timeout: Request timeout in seconds
        """
        if prompts_file is None:
            prompts_file = str(PROMPTS_FILE)
        self.prompts = self._load_prompts(prompts_file)
        self.model = model

        if client is not None:
            self.client = client
        elif api_key:
            self.client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        else:
            self.client = None

    @classmethod
    def from_settings(cls, settings) -> "NoticeExtractor":
        return cls(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout=max(settings.request_timeout, 60.0)
        )

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def _load_prompts(self, prompts_file: str) -> Dict[str, Dict[str, str]]:
        """Load prompts from YAML file"""
        try:
            with open(prompts_file, 'r', encoding='utf-8') as f:
                prompts_data = yaml.safe_load(f)
            return prompts_data.get('prompts', {})
        except FileNotFoundError:
            raise ConfigurationError(f"Prompts file '{prompts_file}' not found!")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing prompts YAML file: {e}")

    def _get_prompt(self, prompt_category: str, prompt_type: str, **kwargs) -> str:
        """
        Get a prompt template and format it with provided variables.

        Args:
            prompt_category: Category of prompt (e.g., 'extraction', 'refinement')
            prompt_type: Type of prompt ('system' or 'user_template')
            **kwargs: Variables to format into the template

        Returns:
            Formatted prompt string
        """
        if prompt_category not in self.prompts:
            raise ConfigurationError(f"Prompt category '{prompt_category}' not found in prompts file")

        if prompt_type not in self.prompts[prompt_category]:
            raise ConfigurationError(f"Prompt type '{prompt_type}' not found in category '{prompt_category}'")

        template = self.prompts[prompt_category][prompt_type]

        try:
            return template.format(**kwargs)
        except KeyError as e:
            raise ConfigurationError(f"Missing required variable '{e}' for prompt template")

    def _require_client(self):
        if self.client is None:
            raise ConfigurationError(
                "Gemini API key not configured. Set GEMINI_API_KEY to extract data from property notices.",
                code="GEMINI_API_KEY_MISSING"
            )

    def _complete(self, prompt_category: str, **kwargs) -> str:
        """Send one prompt and return the response text."""
        self._require_client()
        system_prompt = self._get_prompt(prompt_category, "system")
        user_prompt = self._get_prompt(prompt_category, "user_template", **kwargs)

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt}
                ],
                temperature=0.1
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise AIServiceError(
                "Invalid Gemini API key. Please check your GEMINI_API_KEY.",
                code="GEMINI_API_KEY_INVALID",
                status_code=403,
                details=str(e)
            )
        except openai.RateLimitError as e:
            raise AIServiceError(
                "Gemini API quota exceeded. Please try again later.",
                code="GEMINI_QUOTA_EXCEEDED",
                status_code=429,
                details=str(e)
            )
        except openai.OpenAIError as e:
            raise AIServiceError(f"Gemini processing failed: {e}")

        if not response.choices:
            raise AIServiceError("Gemini returned no choices")
        return (response.choices[0].message.content or "").strip()

    def extract(self, raw_text: str) -> ExtractionResult:
        """
        Extract the notice fields from OCR text.

        Raises:
            ConfigurationError: If no Gemini key is configured
            AIServiceError: If the Gemini call itself fails
        """
        start_time = time.monotonic()
        logger.info("Processing text with Gemini (%d characters)", len(raw_text))

        response_text = self._complete("extraction", raw_text=raw_text)
        result = parse_extraction_response(response_text)
        result.processing_time_ms = int((time.monotonic() - start_time) * 1000)

        logger.info(
            "Gemini extraction finished in %dms, village=%r confidence=%.2f",
            result.processing_time_ms, result.fields.village_name, result.confidence
        )
        return result

    def refine(self, fields: NoticeFields, raw_text: str) -> RefinementResult:
        """
        Second, narrower pass over village name, survey number and date.

        Never raises: any failure returns the original fields with
        ``applied=False`` and the reason in ``error``.
        """
        start_time = time.monotonic()

        def elapsed():
            return int((time.monotonic() - start_time) * 1000)

        try:
            response_text = self._complete(
                "refinement",
                village_name=fields.village_name or "Not found",
                survey_number=fields.survey_number or "Not found",
                notice_date=fields.notice_date or "Not found",
                raw_text=raw_text
            )
            data = parse_json_response(response_text)
        except (ConfigurationError, UpstreamServiceError, ParseError) as e:
            logger.warning("Refinement skipped, continuing with original data: %s", e)
            return RefinementResult(
                original=fields,
                refined=fields,
                applied=False,
                error=e.message,
                processing_time_ms=elapsed()
            )

        refined_values = NoticeFields.from_dict(data).to_dict()
        overlay = {name: value for name, value in refined_values.items() if value is not None}
        refined = _with_clean_village(replace(fields, **overlay))
        confidence = clamp_confidence(data.get("confidence_score"), FENCED_CONFIDENCE)

        coordinates = None
        latitude, longitude = _coordinate(data.get("latitude"), 90), _coordinate(data.get("longitude"), 180)
        if latitude is not None and longitude is not None:
            coordinates = CoordinateCandidate(
                latitude=latitude,
                longitude=longitude,
                source="gemini_refinement",
                confidence=confidence
            )

        logger.info(
            "Refinement applied: village %r -> %r, survey %r -> %r, date %r -> %r",
            fields.village_name, refined.village_name,
            fields.survey_number, refined.survey_number,
            fields.notice_date, refined.notice_date
        )
        return RefinementResult(
            original=fields,
            refined=refined,
            applied=True,
            confidence=confidence,
            notes=data.get("refinement_notes"),
            coordinates=coordinates,
            processing_time_ms=elapsed()
        )

    def estimate_coordinates(
        self,
        village_name: str,
        district: Optional[str] = None,
        raw_text: str = ""
    ) -> Optional[CoordinateCandidate]:
        """Ask Gemini where a village is. Returns None on any failure."""
        if not village_name:
            return None

        try:
            response_text = self._complete(
                "coordinates",
                village_name=village_name,
                district=district or "Unknown",
                context=(raw_text or "")[:500]
            )
            data = parse_json_response(response_text)
        except (ConfigurationError, UpstreamServiceError, ParseError) as e:
            logger.warning("AI coordinate estimate failed for %r: %s", village_name, e)
            return None

        latitude, longitude = _coordinate(data.get("latitude"), 90), _coordinate(data.get("longitude"), 180)
        if latitude is None or longitude is None:
            logger.info("Gemini gave no coordinates for %r", village_name)
            return None

        return CoordinateCandidate(
            latitude=latitude,
            longitude=longitude,
            source="gemini",
            confidence=clamp_confidence(data.get("confidence_score"), 0.6),
            district=data.get("district") or district,
            taluka=data.get("taluka")
        )

    def test_connection(self) -> dict:
        try:
            text = self._complete("connection_test")
        except (ConfigurationError, AIServiceError) as e:
            logger.error("Gemini connection test failed: %s", e)
            return {"success": False, "message": "Gemini API connection failed", "error": e.message, "code": e.code}

        return {
            "success": "API Working" in text,
            "message": "Gemini API connection successful" if "API Working" in text else "Unexpected Gemini response",
            "response": text
        }
