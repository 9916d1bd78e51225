"""
Custom exceptions for property notice processing.

Every error carries a machine-readable ``code`` and the HTTP status the API
should answer with, so route handlers never have to map them one by one.
"""

from typing import Any, Optional


class NoticeError(Exception):
    """Base exception for notice processing errors"""

    code = "OPERATIONAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Any = None
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ConfigurationError(NoticeError):
    """Raised when a service credential is missing"""
    code = "CONFIGURATION_ERROR"
    status_code = 500


class ValidationError(NoticeError):
    """Raised when request input is malformed or missing"""
    code = "VALIDATION_ERROR"
    status_code = 400


class MissingFileError(ValidationError):
    code = "MISSING_FILE"


class InvalidFileTypeError(ValidationError):
    code = "INVALID_FILE_TYPE"


class FileTooLargeError(ValidationError):
    code = "FILE_TOO_LARGE"
    status_code = 413


class UpstreamServiceError(NoticeError):
    """Raised when an external service answers with a failure"""
    code = "UPSTREAM_SERVICE_ERROR"
    status_code = 500


class VisionApiError(UpstreamServiceError):
    """Raised when Cloud Vision reports an error"""
    code = "VISION_API_ERROR"


class AIServiceError(UpstreamServiceError):
    """Raised when the Gemini call fails"""
    code = "GEMINI_PROCESSING_ERROR"


class GeocodingApiError(UpstreamServiceError):
    """Raised when the Maps geocoding API returns a non-OK status"""
    code = "GOOGLE_MAPS_API_ERROR"


class StoreError(UpstreamServiceError):
    """Raised when Firestore reads or writes fail"""
    code = "DATABASE_ERROR"


class ParseError(NoticeError):
    """Raised when an AI response cannot be parsed as JSON"""
    code = "PARSE_ERROR"
    status_code = 500


class ImageNotFoundError(NoticeError):
    """Raised when the uploaded image path does not resolve"""
    code = "FILE_NOT_FOUND"
    status_code = 404


class NoTextDetectedError(NoticeError):
    """Raised when OCR returns zero text annotations"""
    code = "NO_TEXT_DETECTED"
    status_code = 400


class EmptyTextError(NoticeError):
    """Raised when detected text is only whitespace"""
    code = "EMPTY_TEXT_DETECTED"
    status_code = 400


class NoticeNotFoundError(NoticeError):
    """Raised when a stored notice does not exist"""
    code = "NOT_FOUND"
    status_code = 404
