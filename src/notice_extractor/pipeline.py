"""
Pipeline orchestration: image -> OCR -> extraction -> refinement ->
geocoding -> reconciliation -> persistence.

Every stage runs sequentially in the caller's thread. Stage-fatal errors
(no image, no text, missing credentials) propagate as NoticeError;
refinement, coordinate lookup, auto-geocoding and processing logs are
best-effort and only leave a trace in the result.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .config import GEOCODE_EXISTING_DELAY, REFINE_BATCH_DELAY
from .exceptions import NoticeError, NoticeNotFoundError, ValidationError
from .models import (
    CoordinateCandidate,
    ExtractionResult,
    NoticeFields,
    OCRResult,
    ReconciledCoordinates,
    RefinementResult,
)
from .reconcile import reconcile_coordinates
from .services import Services
from .text_cleaner import parse_notice_date, postprocess_village_name

logger = logging.getLogger(__name__)

AI_SERVICE_VISION_GEMINI = "google_vision_and_gemini"
AI_SERVICE_VISION_GEMINI_REFINED = "google_vision_gemini_refined"
AI_SERVICE_GEMINI_TEXT = "gemini_text"
AI_SERVICE_EXTERNAL = "external_ai"


def _elapsed_ms(start_time: float) -> int:
    return int((time.monotonic() - start_time) * 1000)


@dataclass
class LocationOutcome:
    """Reconciled coordinates plus how the geocoding stage went"""
    coordinates: ReconciledCoordinates
    status: str
    error: Optional[str] = None


@dataclass
class PipelineResult:
    """Everything one pipeline run produced"""
    raw_text: str
    extraction: ExtractionResult
    refinement: RefinementResult
    location: LocationOutcome
    ai_service: str
    processing_time_ms: int = 0
    ocr: Optional[OCRResult] = None

    @property
    def fields(self) -> NoticeFields:
        return self.refinement.fields

    @property
    def confidence_score(self) -> float:
        if self.refinement.applied and self.refinement.confidence is not None:
            return max(self.extraction.confidence, self.refinement.confidence)
        return self.extraction.confidence

    def extracted_data(self) -> Dict[str, Any]:
        """The flat dict that is shown for confirmation and stored as ``extracted_data``."""
        data = self.refinement.as_extracted_data()
        data["extraction_notes"] = self.extraction.notes
        data["geocoding_status"] = self.location.status
        data["geocoding_error"] = self.location.error

        coordinates = self.location.coordinates
        if coordinates.success:
            data.update({
                "latitude": coordinates.latitude,
                "longitude": coordinates.longitude,
                "full_address": coordinates.formatted_address,
                "coordinate_source": coordinates.coordinate_source,
                "coordinate_confidence": coordinates.confidence_score,
                "coordinate_distance_km": coordinates.distance_km,
            })
            data["district"] = coordinates.district or data.get("district")
            data["taluka"] = coordinates.taluka or data.get("taluka")
            if coordinates.alternative is not None:
                data["alternative_coordinates"] = coordinates.alternative.to_dict()
        return data

    def to_response(self, filename: Optional[str] = None) -> Dict[str, Any]:
        """camelCase payload returned by /process-notice for user confirmation"""
        return {
            "extractedData": self.extracted_data(),
            "rawText": self.raw_text,
            "confidenceScore": self.confidence_score,
            "processingTime": self.processing_time_ms,
            "aiService": self.ai_service,
            "filename": filename,
            "needsConfirmation": True,
        }


def locate(
    services: Services,
    fields: NoticeFields,
    raw_text: str = "",
    ai_candidate: Optional[CoordinateCandidate] = None
) -> LocationOutcome:
    """
    Find coordinates for the notice's village from the AI estimate and the
    geocoder, and reconcile them. Never raises.

    The AI estimate from refinement is reused when present; the separate
    coordinate prompt only runs when there is none.
    """
    village = fields.village_name
    if not village or len(village) < 2:
        return LocationOutcome(
            coordinates=ReconciledCoordinates(success=False, error="No village name to locate"),
            status="skipped"
        )

    district = fields.district or services.settings.default_district
    if ai_candidate is None:
        ai_candidate = services.extractor.estimate_coordinates(village, district, raw_text)

    geocoded = None
    geocoding_error = None
    geocoder_raised = False
    try:
        result = services.geocoder.geocode_village(village, district)
        geocoded = result.to_candidate()
        if not result.success:
            geocoding_error = result.error
    except NoticeError as e:
        logger.warning("Geocoding failed for %r, continuing without it: %s", village, e)
        geocoding_error = e.message
        geocoder_raised = True

    coordinates = reconcile_coordinates(ai_candidate, geocoded, village, district)
    if coordinates.success:
        status = "success"
    elif geocoder_raised:
        status = "error"
    else:
        status = "failed"
    return LocationOutcome(coordinates=coordinates, status=status, error=geocoding_error)


def skipped_refinement(fields: NoticeFields, reason: str) -> RefinementResult:
    return RefinementResult(original=fields, refined=fields, applied=False, error=reason)


def process_text(
    services: Services,
    raw_text: str,
    refine: bool = True,
    find_location: bool = True
) -> PipelineResult:
    """
    Extract (and optionally refine and locate) notice fields from text.

    Raises:
        ValidationError: If the text is empty
        ConfigurationError: If Gemini is not configured
        AIServiceError: If the extraction call fails
    """
    if not raw_text or not raw_text.strip():
        raise ValidationError("Text is required", code="MISSING_TEXT")

    start_time = time.monotonic()
    extraction = services.extractor.extract(raw_text)

    if refine:
        refinement = services.extractor.refine(extraction.fields, raw_text)
    else:
        refinement = skipped_refinement(extraction.fields, "Refinement not requested")

    if find_location:
        location = locate(services, refinement.fields, raw_text, refinement.coordinates)
    else:
        location = LocationOutcome(
            coordinates=ReconciledCoordinates(success=False, error="Location lookup not requested"),
            status="pending"
        )

    return PipelineResult(
        raw_text=raw_text,
        extraction=extraction,
        refinement=refinement,
        location=location,
        ai_service=AI_SERVICE_GEMINI_TEXT,
        processing_time_ms=_elapsed_ms(start_time)
    )


def process_image(services: Services, image_path: str) -> PipelineResult:
    """
    Full pipeline over an uploaded image. Nothing is persisted.

    Raises:
        ImageNotFoundError, NoTextDetectedError, EmptyTextError, VisionApiError:
            From the OCR stage
        ConfigurationError, AIServiceError: From the extraction stage
    """
    start_time = time.monotonic()
    logger.info("Starting OCR + Gemini processing for: %s", image_path)

    ocr_result = services.ocr.extract_text(image_path)
    result = process_text(services, ocr_result.raw_text)
    result.ocr = ocr_result
    result.ai_service = (
        AI_SERVICE_VISION_GEMINI_REFINED if result.refinement.applied else AI_SERVICE_VISION_GEMINI
    )
    result.processing_time_ms = _elapsed_ms(start_time)

    logger.info("Total processing time (%s): %dms", result.ai_service, result.processing_time_ms)
    return result


def geocode_notice(services: Services, notice: Dict[str, Any]) -> Dict[str, Any]:
    """
    Geocode one stored notice and write the outcome onto it. Never raises;
    failures end up in ``geocoding_status``/``geocoding_error``.
    """
    notice_id = notice["id"]
    village = notice.get("village_name")
    district = notice.get("district") or services.settings.default_district
    start_time = time.monotonic()

    result = None
    try:
        result = services.geocoder.geocode_village(village, district)
        if result.success:
            location = result.to_dict()
            location["district"] = result.district or notice.get("district")
            location["taluka"] = result.taluka or notice.get("taluka")
        else:
            location = {"status": "failed", "error": result.error}
    except NoticeError as e:
        logger.warning("Auto-geocoding failed for notice %s (%r): %s", notice_id, village, e)
        location = {"status": "error", "error": e.message}

    succeeded = result is not None and result.success
    try:
        services.store.update_location(notice_id, location)
    except NoticeError as e:
        logger.error("Could not store geocoding result for notice %s: %s", notice_id, e)
    services.store.log_step(
        notice_id,
        "GEOCODING",
        "success" if succeeded else "error",
        error_message=location.get("error"),
        processing_time_ms=_elapsed_ms(start_time)
    )

    return {
        "id": notice_id,
        "village_name": village,
        "success": succeeded,
        "status": location["status"],
        "coordinates": {"lat": result.latitude, "lng": result.longitude} if succeeded else None,
        "error": location.get("error"),
    }


def save_notice(
    services: Services,
    extracted_data: Dict[str, Any],
    raw_text: Optional[str] = None,
    confidence_score: Optional[float] = None,
    processing_time_ms: Optional[int] = None,
    ai_service: Optional[str] = None,
    filename: Optional[str] = None,
    processing_status: str = "completed",
    auto_geocode: bool = True
) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    """
    Persist a confirmed notice, then geocode it if it has a village but no
    coordinates yet. Geocoding never fails the save.

    Returns:
        (stored record, geocoding summary or None)
    """
    record = services.store.save_notice(
        extracted_data,
        raw_text=raw_text,
        confidence_score=confidence_score,
        processing_time_ms=processing_time_ms,
        processing_status=processing_status,
        ai_service=ai_service or AI_SERVICE_VISION_GEMINI,
        filename=filename
    )

    geocoding = None
    if auto_geocode and record.get("village_name") and record.get("latitude") is None:
        geocoding = geocode_notice(services, record)
        try:
            record = services.store.get_notice(record["id"]) or record
        except NoticeError as e:
            logger.error("Could not reload notice %s after geocoding: %s", record["id"], e)
    return record, geocoding


def save_pipeline_result(services: Services, result: PipelineResult, filename: Optional[str] = None) -> Dict[str, Any]:
    """
    Persist a pipeline result, reporting (not raising) a failed save.
    """
    summary = {
        "extracted_data": result.extracted_data(),
        "raw_text": result.raw_text,
        "confidence_score": result.confidence_score,
        "processing_time_ms": result.processing_time_ms,
        "ai_service": result.ai_service,
        "processing_status": "completed",
    }
    if result.ocr is not None:
        summary["ocr"] = result.ocr.to_dict()
    if result.location.coordinates.success:
        summary["location"] = result.location.coordinates.to_dict()

    try:
        record, _ = save_notice(
            services,
            summary["extracted_data"],
            raw_text=result.raw_text,
            confidence_score=result.confidence_score,
            processing_time_ms=result.processing_time_ms,
            ai_service=result.ai_service,
            filename=filename,
            auto_geocode=False
        )
        summary["database_id"] = record["id"]
        summary["saved_to_database"] = True
    except NoticeError as e:
        logger.error("Saving processed notice failed: %s", e)
        summary["saved_to_database"] = False
        summary["database_error"] = e.message
    return summary


def geocode_existing(services: Services, delay: float = GEOCODE_EXISTING_DELAY, sleep=time.sleep) -> Dict[str, Any]:
    """Geocode every stored notice that still has no coordinates."""
    villages = services.store.villages_needing_geocoding()
    logger.info("Found %d villages needing geocoding", len(villages))

    results = []
    for village in villages:
        results.append(geocode_notice(services, village))
        sleep(delay)

    return {
        "message": f"Processed {len(villages)} villages",
        "processed": len(villages),
        "successful": sum(1 for r in results if r["success"]),
        "results": results,
    }


def _stored_fields(notice: Dict[str, Any]) -> NoticeFields:
    """Fields of a stored notice, with the date back in DD/MM/YYYY form."""
    fields = NoticeFields.from_dict(notice)
    notice_date = parse_notice_date(fields.notice_date)
    if notice_date is not None:
        fields.notice_date = notice_date.strftime("%d/%m/%Y")
    return fields


def refine_notice(services: Services, notice_id: str) -> Dict[str, Any]:
    """
    Run the refinement pass over a stored notice and write back what improved.

    Raises:
        NoticeNotFoundError: If the notice does not exist
    """
    notice = services.store.get_notice(notice_id)
    if notice is None:
        raise NoticeNotFoundError("Property notice not found")

    start_time = time.monotonic()
    raw_text = notice.get("raw_text") or ""
    original = _stored_fields(notice)
    refinement = services.extractor.refine(original, raw_text)

    summary = {
        "id": notice_id,
        "refinement_applied": refinement.applied,
        "original_data": original.to_dict(),
        "refined_data": refinement.fields.to_dict(),
        "refinement_notes": refinement.notes,
    }
    if not refinement.applied:
        summary["refinement_error"] = refinement.error
        services.store.log_step(notice_id, "REFINEMENT", "error", refinement.error, _elapsed_ms(start_time))
        return summary

    refined = refinement.refined
    location = locate(services, refined, raw_text, refinement.coordinates)

    extracted_data = dict(notice.get("extracted_data") or {})
    extracted_data.update(refinement.as_extracted_data())
    updates = {
        "village_name": refined.village_name,
        "village_name_cleaned": refined.village_name_cleaned,
        "survey_number": refined.survey_number,
        "extracted_data": extracted_data,
        "confidence_score": max(notice.get("confidence_score") or 0, refinement.confidence or 0),
    }
    # an unparseable refined date must not erase the stored one
    if parse_notice_date(refined.notice_date) is not None:
        updates["notice_date"] = refined.notice_date
    else:
        logger.warning("Refined notice date %r could not be parsed, keeping %r", refined.notice_date, original.notice_date)
    services.store.update_notice(notice_id, updates)

    coordinates = location.coordinates
    if coordinates.success:
        services.store.update_location(notice_id, {
            "latitude": coordinates.latitude,
            "longitude": coordinates.longitude,
            "district": coordinates.district,
            "taluka": coordinates.taluka,
            "formatted_address": coordinates.formatted_address,
            "status": "success",
        })
    services.store.log_step(notice_id, "REFINEMENT", "success", processing_time_ms=_elapsed_ms(start_time))

    summary["coordinates"] = coordinates.to_dict()
    summary["improvements"] = {
        "village_name_changed": original.village_name != refined.village_name,
        "survey_number_changed": original.survey_number != refined.survey_number,
        "notice_date_changed": original.notice_date != refined.notice_date,
        "coordinates_added": notice.get("latitude") is None and coordinates.success,
        "coordinates_improved": notice.get("latitude") is not None and coordinates.success,
    }
    return summary


def refine_batch(
    services: Services,
    ids: Optional[List[str]] = None,
    refine_all: bool = False,
    delay: float = REFINE_BATCH_DELAY,
    sleep=time.sleep
) -> Dict[str, Any]:
    """
    Refine several stored notices one at a time. With ``refine_all`` every
    notice not refined yet is picked up.

    Raises:
        ValidationError: If there is nothing to refine
    """
    notice_ids = ids
    if refine_all:
        notice_ids = [
            notice["id"]
            for notice in services.store.list_all_notices()
            if not (notice.get("extracted_data") or {}).get("refinement_applied")
        ]
        logger.info("Found %d notices that need refinement", len(notice_ids))

    if not notice_ids:
        raise ValidationError("No notice IDs provided for refinement", code="MISSING_IDS")

    results = []
    for notice_id in notice_ids:
        try:
            summary = refine_notice(services, notice_id)
            results.append({
                "id": notice_id,
                "success": summary["refinement_applied"],
                "improvements": summary.get("improvements"),
                "error": summary.get("refinement_error"),
            })
        except NoticeError as e:
            logger.error("Failed to refine notice %s: %s", notice_id, e)
            results.append({"id": notice_id, "success": False, "error": e.message})
        sleep(delay)

    successful = sum(1 for r in results if r["success"])
    return {
        "message": f"Batch refinement completed: {successful}/{len(notice_ids)} successful",
        "total_processed": len(notice_ids),
        "successful": successful,
        "failed": len(notice_ids) - successful,
        "results": results,
    }


def fix_village_names(services: Services, dry_run: bool = False) -> Dict[str, Any]:
    """
    Re-run the village post-processor over every stored notice.

    Renamed notices without coordinates are set back to ``pending`` so the
    next geocoding sweep picks them up.
    """
    changes = []
    skipped = 0
    for notice in services.store.list_all_notices():
        original = notice.get("village_name")
        if not original:
            continue
        cleaned = postprocess_village_name(original)
        if not cleaned or cleaned == original:
            skipped += 1
            continue

        changes.append({"id": notice["id"], "original": original, "cleaned": cleaned})
        if dry_run:
            continue

        updates = {"village_name": cleaned, "village_name_cleaned": cleaned}
        if notice.get("latitude") is None:
            updates["geocoding_status"] = "pending"
        services.store.update_notice(notice["id"], updates)

    logger.info("Village names fixed: %d, skipped: %d", len(changes), skipped)
    return {"fixed": len(changes), "skipped": skipped, "dry_run": dry_run, "changes": changes}
