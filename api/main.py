"""
FastAPI API for the Property Notice Extractor
"""
from fastapi import FastAPI, Depends, File, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from pathlib import Path
import logging
import sys
import uuid

# Add src to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from notice_extractor import (
    NoticeError,
    MissingFileError,
    InvalidFileTypeError,
    FileTooLargeError,
    ValidationError,
    NoticeNotFoundError,
    Services,
    Settings,
    get_services,
    validate_config,
    __version__
)
from notice_extractor import pipeline
from notice_extractor.export import export_filename, filter_notices, notices_to_csv, with_map_links

startup_settings = Settings.from_env()

logging.basicConfig(
    level=startup_settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Property Notice Extractor API",
    description="API for extracting, geocoding and storing Gujarati property notices",
    version=__version__
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handlers
@app.exception_handler(NoticeError)
async def notice_error_handler(request: Request, exc: NoticeError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: [%s] %s", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.warning("%s %s rejected: [%s] %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request",
            "code": "VALIDATION_ERROR",
            "details": jsonable_encoder(exc.errors())
        }
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": "Endpoint not found" if exc.status_code == 404 else str(exc.detail),
            "code": "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
        }
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "An unexpected error occurred",
            "code": "INTERNAL_SERVER_ERROR"
        }
    )


# Request Models
class SaveNoticeRequest(BaseModel):
    """Request model for saving a confirmed notice"""
    extractedData: Dict[str, Any] = Field(..., description="Fields confirmed by the user")
    rawText: Optional[str] = Field(None, description="OCR text the fields came from")
    confidenceScore: Optional[float] = Field(None, description="Extraction confidence (0-1)")
    processingTime: Optional[int] = Field(None, description="Processing time in milliseconds")
    aiService: Optional[str] = Field(None, description="Services used to produce the fields")
    filename: Optional[str] = Field(None, description="Name of the uploaded image")

    class Config:
        json_schema_extra = {
            "example": {
                "extractedData": {
                    "village_name": "રીબડા",
                    "survey_number": "367",
                    "buyer_name": "રમેશભાઈ પટેલ",
                    "seller_name": "સુરેશભાઈ શાહ",
                    "notice_date": "18/07/2025",
                    "district": "Rajkot"
                },
                "rawText": "મોજે ગામ રીબડાના રેવન્યુ સર્વે નં.૩૬૭ ...",
                "confidenceScore": 0.85,
                "processingTime": 4200,
                "aiService": "google_vision_gemini_refined",
                "filename": "property-notice-1234.jpg"
            }
        }


class ProcessTextRequest(BaseModel):
    """Request model for extracting fields from text"""
    text: str = Field(..., min_length=1, description="OCR text of a property notice")

    class Config:
        json_schema_extra = {
            "example": {
                "text": "જાહેર નોટીસ\nમોજે ગામ રીબડાના રેવન્યુ સર્વે નં.૩૬૭ ...\nતારીખ:-૧૮-૦૭-૨૦૨૫"
            }
        }


class ProcessExtractedTextRequest(BaseModel):
    """Request model for storing fields extracted by an external AI"""
    raw_text: str = Field(..., min_length=1, description="OCR text of the notice")
    extracted_data: Dict[str, Any] = Field(..., description="Fields extracted elsewhere")
    confidence_score: Optional[float] = Field(None, description="Extraction confidence (0-1)")


class GeocodeVillageRequest(BaseModel):
    """Request model for geocoding one village"""
    villageName: str = Field(..., min_length=1, description="Village name (Gujarati or English)")
    district: Optional[str] = Field(None, description="Optional district to disambiguate")

    class Config:
        json_schema_extra = {
            "example": {
                "villageName": "રીબડા",
                "district": "Rajkot"
            }
        }


class GeocodeBatchRequest(BaseModel):
    """Request model for geocoding several villages"""
    villages: List[Dict[str, Any]] = Field(..., description="Entries with 'name' and optional 'district'")


class RefineBatchRequest(BaseModel):
    """Request model for batch refinement"""
    ids: Optional[List[str]] = Field(None, description="Notice IDs to refine")
    refine_all: bool = Field(False, description="Refine every notice not refined yet")


# Upload handling
async def save_upload(image: Optional[UploadFile], services: Services) -> Path:
    """Validate an uploaded image and write it to the upload directory."""
    settings = services.settings
    if image is None or not image.filename:
        raise MissingFileError("No image file provided")

    if image.content_type not in settings.allowed_file_types:
        raise InvalidFileTypeError(
            f"Invalid file type. Only {', '.join(settings.allowed_file_types)} are allowed."
        )

    content = await image.read()
    if len(content) > settings.max_file_size:
        raise FileTooLargeError(
            f"File too large. Maximum size is {settings.max_file_size // (1024 * 1024)}MB."
        )
    if not content:
        raise ValidationError("Uploaded file is empty", code="EMPTY_FILE")

    extension = Path(image.filename).suffix.lower() or ".jpg"
    return await run_in_threadpool(write_upload, Path(settings.upload_dir), extension, content)


def write_upload(upload_dir: Path, extension: str, content: bytes) -> Path:
    upload_dir.mkdir(parents=True, exist_ok=True)
    path = upload_dir / f"property-notice-{uuid.uuid4()}{extension}"
    path.write_bytes(content)
    return path


def remove_upload(path: Optional[Path]) -> None:
    if path is None or not path.exists():
        return
    try:
        path.unlink()
    except OSError as e:
        logger.error("Failed to clean up file %s: %s", path, e)


# API Endpoints
@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Property Notice Extractor API",
        "version": __version__,
        "endpoints": {
            "POST /process-notice": "OCR + Gemini extraction + refinement + location for an image (not saved)",
            "POST /save-notice": "Save confirmed fields, then geocode the village",
            "POST /extract-raw-text": "OCR only",
            "POST /process-with-gemini": "Full pipeline for an image, saved to the database",
            "POST /process-text-with-gemini": "Gemini extraction for text, saved to the database",
            "POST /process-extracted-text": "Save fields extracted by an external AI",
            "GET /notices": "List notices (limit, start_after, village, district, search)",
            "GET /notices/export.csv": "Export notices as CSV",
            "GET /notices/{id}": "Get one notice",
            "DELETE /notices/{id}": "Delete a notice and its processing logs",
            "GET /stats": "Dashboard statistics",
            "POST /geocode/village": "Geocode one village",
            "POST /geocode/batch": "Geocode several villages",
            "POST /geocode/existing": "Geocode stored notices without coordinates",
            "POST /refine-notice/{id}": "Refine a stored notice",
            "POST /refine-batch": "Refine several stored notices",
            "GET /health": "Health check",
            "GET /status": "Service and configuration status",
            "GET /test-gemini": "Gemini connectivity test"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__
    }


@app.get("/status")
def status(services: Services = Depends(get_services)):
    """Service status with the configuration check"""
    settings = services.settings
    return {
        "status": "running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
        "upload_dir": settings.upload_dir,
        "services": services.describe(),
        "config": validate_config(settings)
    }


@app.get("/test-gemini")
def test_gemini(services: Services = Depends(get_services)):
    """Check that Gemini answers"""
    result = services.extractor.test_connection()
    return {
        "gemini_api_working": result["success"],
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "details": result
    }


@app.post("/process-notice")
async def process_notice(
    image: Optional[UploadFile] = File(None, description="Photo of the property notice"),
    services: Services = Depends(get_services)
):
    """
    Run OCR, Gemini extraction, refinement and coordinate lookup on an image.

    Nothing is saved: the result is returned for the user to confirm and
    then sent to POST /save-notice.
    """
    path = None
    try:
        path = await save_upload(image, services)
        result = await run_in_threadpool(pipeline.process_image, services, str(path))
        return {
            "success": True,
            "message": "Property notice processed successfully",
            "data": result.to_response(filename=path.name)
        }
    finally:
        await run_in_threadpool(remove_upload, path)


@app.post("/save-notice")
def save_notice(request: SaveNoticeRequest, services: Services = Depends(get_services)):
    """
    Save a confirmed notice.

    The village is geocoded right after the save. A geocoding failure is
    recorded on the notice (geocoding_status) and never fails the request.
    """
    record, geocoding = pipeline.save_notice(
        services,
        request.extractedData,
        raw_text=request.rawText,
        confidence_score=request.confidenceScore,
        processing_time_ms=request.processingTime,
        ai_service=request.aiService,
        filename=request.filename
    )
    return {
        "success": True,
        "message": "Property notice saved to database successfully",
        "data": {
            "id": record["id"],
            "extractedData": record.get("extracted_data") or request.extractedData,
            "uploadedAt": record.get("uploaded_at"),
            "geocodingStatus": record.get("geocoding_status"),
            "geocoding": geocoding,
            "record": with_map_links(record)
        }
    }


@app.post("/extract-raw-text")
async def extract_raw_text(
    image: Optional[UploadFile] = File(None, description="Photo of the property notice"),
    services: Services = Depends(get_services)
):
    """OCR only, for processing the text elsewhere"""
    path = None
    try:
        path = await save_upload(image, services)
        ocr_result = await run_in_threadpool(services.ocr.extract_text, str(path))
        return {
            "success": True,
            "message": "Raw text extracted successfully",
            "data": ocr_result.to_dict()
        }
    finally:
        await run_in_threadpool(remove_upload, path)


@app.post("/process-with-gemini")
async def process_with_gemini(
    image: Optional[UploadFile] = File(None, description="Photo of the property notice"),
    services: Services = Depends(get_services)
):
    """Full pipeline for an image including the database save"""
    path = None
    try:
        path = await save_upload(image, services)
        result = await run_in_threadpool(pipeline.process_image, services, str(path))
        summary = await run_in_threadpool(pipeline.save_pipeline_result, services, result, path.name)
        return {
            "success": True,
            "message": "Image processed successfully with Gemini AI (includes village location)",
            "data": summary
        }
    finally:
        await run_in_threadpool(remove_upload, path)


@app.post("/process-text-with-gemini")
def process_text_with_gemini(request: ProcessTextRequest, services: Services = Depends(get_services)):
    """Gemini extraction for text from an external OCR, saved to the database"""
    result = pipeline.process_text(services, request.text, refine=False, find_location=False)
    summary = pipeline.save_pipeline_result(services, result, filename="raw_text_input")
    return {
        "success": True,
        "message": "Text processed successfully with Gemini AI",
        "data": summary
    }


@app.post("/process-extracted-text")
def process_extracted_text(request: ProcessExtractedTextRequest, services: Services = Depends(get_services)):
    """Save fields that an external AI extracted from OCR text"""
    record, _ = pipeline.save_notice(
        services,
        request.extracted_data,
        raw_text=request.raw_text,
        confidence_score=request.confidence_score,
        processing_time_ms=0,
        ai_service=pipeline.AI_SERVICE_EXTERNAL,
        processing_status="completed_external_ai",
        auto_geocode=False
    )
    return {
        "success": True,
        "message": "External AI processed data saved successfully",
        "data": {
            "id": record["id"],
            "extractedData": record.get("extracted_data"),
            "rawText": record.get("raw_text"),
            "confidenceScore": record.get("confidence_score"),
            "uploadedAt": record.get("uploaded_at")
        }
    }


@app.get("/notices")
def list_notices(
    limit: int = Query(1000, ge=1, le=10000),
    start_after: Optional[str] = Query(None, description="ID of the last notice on the previous page"),
    village: Optional[str] = None,
    district: Optional[str] = None,
    search: Optional[str] = None,
    services: Services = Depends(get_services)
):
    """List notices, most recent first"""
    page = services.store.list_notices(limit=limit, start_after=start_after)
    notices = [with_map_links(n) for n in filter_notices(page, village=village, district=district, search=search)]
    return {
        "success": True,
        "notices": notices,
        "data": notices,
        "pagination": {
            "limit": limit,
            "start_after": start_after,
            "hasMore": len(page) == limit,
            "next_start_after": page[-1]["id"] if page else None
        }
    }


@app.get("/notices/export.csv")
def export_notices(
    village: Optional[str] = None,
    district: Optional[str] = None,
    search: Optional[str] = None,
    services: Services = Depends(get_services)
):
    """CSV export with the same filters as GET /notices"""
    notices = filter_notices(services.store.list_all_notices(), village=village, district=district, search=search)
    return Response(
        content=notices_to_csv(notices),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'}
    )


@app.get("/notices/{notice_id}")
def get_notice(notice_id: str, services: Services = Depends(get_services)):
    """Get one notice"""
    notice = services.store.get_notice(notice_id)
    if notice is None:
        raise NoticeNotFoundError("Property notice not found")
    return {"success": True, "data": with_map_links(notice)}


@app.delete("/notices/{notice_id}")
def delete_notice(notice_id: str, services: Services = Depends(get_services)):
    """Delete a notice together with its processing logs"""
    if not services.store.delete_notice(notice_id):
        raise NoticeNotFoundError("Property notice not found")
    return {
        "success": True,
        "message": "Property notice deleted successfully",
        "data": {"id": notice_id}
    }


@app.get("/stats")
def stats(services: Services = Depends(get_services)):
    """Dashboard statistics"""
    return {"success": True, "data": services.store.stats()}


@app.post("/geocode/village")
def geocode_village(request: GeocodeVillageRequest, services: Services = Depends(get_services)):
    """Geocode one village name"""
    result = services.geocoder.geocode_village(request.villageName, request.district)
    return result.to_dict()


@app.post("/geocode/batch")
def geocode_batch(request: GeocodeBatchRequest, services: Services = Depends(get_services)):
    """Geocode villages one after another"""
    return {"success": True, "results": services.geocoder.geocode_batch(request.villages)}


@app.post("/geocode/existing")
def geocode_existing(services: Services = Depends(get_services)):
    """Geocode every stored notice that has no coordinates"""
    summary = pipeline.geocode_existing(services)
    return {"success": True, **summary}


@app.post("/refine-notice/{notice_id}")
def refine_notice(notice_id: str, services: Services = Depends(get_services)):
    """Run the refinement pass over a stored notice"""
    summary = pipeline.refine_notice(services, notice_id)
    return {
        "success": True,
        "message": "Property notice refined successfully" if summary["refinement_applied"]
        else "Refinement could not be applied, notice left unchanged",
        "data": summary
    }


@app.post("/refine-batch")
def refine_batch(request: RefineBatchRequest, services: Services = Depends(get_services)):
    """Refine several stored notices"""
    summary = pipeline.refine_batch(services, ids=request.ids, refine_all=request.refine_all)
    return {"success": True, "message": summary["message"], "data": summary}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=startup_settings.port)
