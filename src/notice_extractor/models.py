"""
Data models for property notice processing.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional


@dataclass
class NoticeFields:
    """The named fields extracted from one Gujarati property notice"""
    village_name: Optional[str] = None
    village_name_cleaned: Optional[str] = None
    survey_number: Optional[str] = None
    buyer_name: Optional[str] = None
    seller_name: Optional[str] = None
    notice_date: Optional[str] = None
    advocate_name: Optional[str] = None
    advocate_address: Optional[str] = None
    advocate_mobile: Optional[str] = None
    district: Optional[str] = None
    taluka: Optional[str] = None

    @classmethod
    def names(cls):
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "NoticeFields":
        """Build from a loosely-typed dict, keeping only known keys as strings."""
        data = data or {}
        values = {}
        for name in cls.names():
            value = data.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                values[name] = None
            elif isinstance(value, str):
                values[name] = value.strip()
            else:
                values[name] = str(value)
        return cls(**values)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


@dataclass
class OCRResult:
    """Text detected by Cloud Vision in one image"""
    raw_text: str
    confidence: Optional[float]
    annotations_count: int
    processing_time_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw_text": self.raw_text,
            "confidence_score": self.confidence,
            "text_length": len(self.raw_text),
            "annotations_count": self.annotations_count,
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass
class ExtractionResult:
    """Structured output of the extraction prompt"""
    fields: NoticeFields
    confidence: float
    notes: str
    raw_response: Optional[str] = None
    processing_time_ms: int = 0


@dataclass
class CoordinateCandidate:
    """One estimate of where a village is"""
    latitude: float
    longitude: float
    source: str
    confidence: Optional[float] = None
    district: Optional[str] = None
    taluka: Optional[str] = None
    formatted_address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RefinementResult:
    """
    Outcome of the refinement pass.

    ``original`` is what the extractor produced and ``refined`` is what the
    second prompt returned layered over it. When ``applied`` is False the two
    are identical and ``error`` says why.
    """
    original: NoticeFields
    refined: NoticeFields
    applied: bool
    confidence: Optional[float] = None
    notes: Optional[str] = None
    error: Optional[str] = None
    coordinates: Optional[CoordinateCandidate] = None
    processing_time_ms: int = 0

    @property
    def fields(self) -> NoticeFields:
        return self.refined if self.applied else self.original

    def as_extracted_data(self) -> Dict[str, Any]:
        """Flatten into the dict stored as ``extracted_data``."""
        data = self.fields.to_dict()
        data["refinement_applied"] = self.applied
        data["refinement_time_ms"] = self.processing_time_ms
        if self.applied:
            for name in ("village_name", "survey_number", "notice_date"):
                data[f"original_{name}"] = getattr(self.original, name)
            data["refinement_confidence"] = self.confidence
            data["refinement_notes"] = self.notes
        else:
            data["refinement_error"] = self.error
        return data


@dataclass
class GeocodeResult:
    """Result of a Maps geocoding lookup"""
    success: bool
    status: str
    search_query: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    formatted_address: Optional[str] = None
    district: Optional[str] = None
    taluka: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    place_id: Optional[str] = None
    location_type: Optional[str] = None
    error: Optional[str] = None

    def to_candidate(self) -> Optional[CoordinateCandidate]:
        if not self.success or self.latitude is None or self.longitude is None:
            return None
        return CoordinateCandidate(
            latitude=self.latitude,
            longitude=self.longitude,
            source="google_maps",
            district=self.district,
            taluka=self.taluka,
            formatted_address=self.formatted_address,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class ReconciledCoordinates:
    """Coordinates chosen between the AI estimate and the geocoder"""
    success: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    coordinate_source: Optional[str] = None
    confidence_score: Optional[float] = None
    distance_km: Optional[float] = None
    district: Optional[str] = None
    taluka: Optional[str] = None
    formatted_address: Optional[str] = None
    alternative: Optional[CoordinateCandidate] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
