"""
Property Notice Extractor Package

Turns photographs of Gujarati property notices into structured, geocoded
records: Cloud Vision OCR, Gemini extraction and refinement, Google Maps
geocoding and Firestore persistence.
"""

from .config import Settings, validate_config
from .exceptions import (
    NoticeError,
    ConfigurationError,
    ValidationError,
    MissingFileError,
    InvalidFileTypeError,
    FileTooLargeError,
    UpstreamServiceError,
    VisionApiError,
    AIServiceError,
    GeocodingApiError,
    StoreError,
    ParseError,
    ImageNotFoundError,
    NoTextDetectedError,
    EmptyTextError,
    NoticeNotFoundError
)
from .models import (
    NoticeFields,
    OCRResult,
    ExtractionResult,
    RefinementResult,
    CoordinateCandidate,
    GeocodeResult,
    ReconciledCoordinates
)
from .text_cleaner import clean_village_name, postprocess_village_name, parse_notice_date
from .ocr import VisionOCR
from .extractor import NoticeExtractor
from .geocoder import VillageGeocoder
from .reconcile import reconcile_coordinates, haversine
from .store import NoticeStore
from .services import Services, init_services, get_services, reset_services

__version__ = "1.0.0"
__all__ = [
    "Settings",
    "validate_config",
    "NoticeError",
    "ConfigurationError",
    "ValidationError",
    "MissingFileError",
    "InvalidFileTypeError",
    "FileTooLargeError",
    "UpstreamServiceError",
    "VisionApiError",
    "AIServiceError",
    "GeocodingApiError",
    "StoreError",
    "ParseError",
    "ImageNotFoundError",
    "NoTextDetectedError",
    "EmptyTextError",
    "NoticeNotFoundError",
    "NoticeFields",
    "OCRResult",
    "ExtractionResult",
    "RefinementResult",
    "CoordinateCandidate",
    "GeocodeResult",
    "ReconciledCoordinates",
    "clean_village_name",
    "postprocess_village_name",
    "parse_notice_date",
    "VisionOCR",
    "NoticeExtractor",
    "VillageGeocoder",
    "reconcile_coordinates",
    "haversine",
    "NoticeStore",
    "Services",
    "init_services",
    "get_services",
    "reset_services",
]
