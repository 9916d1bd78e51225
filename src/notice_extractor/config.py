"""
Configuration for the property notice extractor.

Loads settings from the environment (and a local .env file) and holds the
pipeline constants. Credentials are optional at load time; each client
raises ConfigurationError the first time it is used without one.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import dotenv

dotenv.load_dotenv()

PROJECT_ROOT = Path(__file__).parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
PROMPTS_FILE = CONFIG_DIR / "prompts.yaml"
DISTRICTS_FILE = CONFIG_DIR / "districts.json"

# Gemini through its OpenAI-compatible endpoint
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
GEMINI_MODEL = "gemini-2.0-flash"

VISION_ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"
VISION_LANGUAGE_HINTS = ("gu", "en")
GEOCODING_ENDPOINT = "https://maps.googleapis.com/maps/api/geocode/json"
GEOCODING_STATE_SUFFIX = "Gujarat, India"

# Reconciliation
VERIFIED_DISTANCE_KM = 10.0
EARTH_RADIUS_KM = 6371.0

# Batch pacing (seconds)
GEOCODE_BATCH_DELAY = 0.1
GEOCODE_EXISTING_DELAY = 0.2
REFINE_BATCH_DELAY = 0.5

ALLOWED_FILE_TYPES = ("image/jpeg", "image/png", "image/jpg")
MAX_FILE_SIZE = 10 * 1024 * 1024


def _env_tuple(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings"""
    gemini_api_key: Optional[str] = None
    gemini_model: str = GEMINI_MODEL
    gemini_base_url: str = GEMINI_BASE_URL
    vision_api_key: Optional[str] = None
    maps_api_key: Optional[str] = None
    firebase_service_account_key: Optional[str] = None
    google_application_credentials: Optional[str] = None
    firebase_project_id: Optional[str] = None
    upload_dir: str = "uploads"
    max_file_size: int = MAX_FILE_SIZE
    allowed_file_types: Tuple[str, ...] = field(default=ALLOWED_FILE_TYPES)
    default_district: str = "Rajkot"
    request_timeout: float = 20.0
    log_level: str = "INFO"
    environment: str = "development"
    port: int = 4000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", GEMINI_MODEL),
            gemini_base_url=os.getenv("GEMINI_BASE_URL", GEMINI_BASE_URL),
            vision_api_key=os.getenv("GOOGLE_VISION_API_KEY") or None,
            maps_api_key=os.getenv("GOOGLE_MAPS_API_KEY") or None,
            firebase_service_account_key=os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY") or None,
            google_application_credentials=os.getenv("GOOGLE_APPLICATION_CREDENTIALS") or None,
            firebase_project_id=os.getenv("FIREBASE_PROJECT_ID") or None,
            upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
            max_file_size=int(os.getenv("MAX_FILE_SIZE", MAX_FILE_SIZE)),
            allowed_file_types=_env_tuple("ALLOWED_FILE_TYPES", ALLOWED_FILE_TYPES),
            default_district=os.getenv("DEFAULT_DISTRICT", "Rajkot"),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "20")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            environment=os.getenv("ENVIRONMENT", "development"),
            port=int(os.getenv("PORT", "4000")),
        )


def validate_config(settings: Settings) -> dict:
    """Validate configuration and return status."""
    issues = []

    if not settings.gemini_api_key:
        issues.append("GEMINI_API_KEY is not set")
    if not (settings.vision_api_key or settings.firebase_service_account_key):
        issues.append("GOOGLE_VISION_API_KEY or FIREBASE_SERVICE_ACCOUNT_KEY is required for OCR")
    if not settings.maps_api_key:
        issues.append("GOOGLE_MAPS_API_KEY is not set")
    if not (settings.firebase_service_account_key or settings.google_application_credentials):
        issues.append("FIREBASE_SERVICE_ACCOUNT_KEY or GOOGLE_APPLICATION_CREDENTIALS is required for Firestore")

    return {
        "valid": len(issues) == 0,
        "issues": issues,
        "config": {
            "gemini_model": settings.gemini_model,
            "upload_dir": settings.upload_dir,
            "max_file_size": settings.max_file_size,
            "default_district": settings.default_district,
            "environment": settings.environment,
        }
    }
