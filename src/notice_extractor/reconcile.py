"""
Choosing between the AI coordinate estimate and the geocoder result.
"""

import logging
from typing import Optional

from geopy.distance import great_circle

from .config import EARTH_RADIUS_KM, VERIFIED_DISTANCE_KM
from .models import CoordinateCandidate, ReconciledCoordinates

logger = logging.getLogger(__name__)

DEFAULT_GEOCODER_CONFIDENCE = 0.8
DEFAULT_AI_CONFIDENCE = 0.7
AI_ONLY_CONFIDENCE = 0.6
GEOCODER_ONLY_CONFIDENCE = 0.7


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres on a sphere of radius EARTH_RADIUS_KM."""
    return great_circle((lat1, lon1), (lat2, lon2), radius=EARTH_RADIUS_KM).km


def _fallback_address(village_name: Optional[str], district: Optional[str]) -> Optional[str]:
    if not village_name:
        return None
    return ", ".join(part for part in (village_name, district, "Gujarat") if part)


def _from_candidate(candidate: CoordinateCandidate, source: str, confidence: float, **extra) -> ReconciledCoordinates:
    return ReconciledCoordinates(
        success=True,
        latitude=candidate.latitude,
        longitude=candidate.longitude,
        coordinate_source=source,
        confidence_score=confidence,
        district=candidate.district,
        taluka=candidate.taluka,
        formatted_address=candidate.formatted_address,
        **extra
    )


def reconcile_coordinates(
    ai: Optional[CoordinateCandidate],
    geocoded: Optional[CoordinateCandidate],
    village_name: Optional[str] = None,
    district: Optional[str] = None
) -> ReconciledCoordinates:
    """
    Pick one set of coordinates for a village.

    Within 10 km of each other the geocoder wins and is marked verified.
    Further apart, the source with the strictly higher confidence wins and a
    tie goes to the AI estimate. A single source is used as-is with a lower
    default confidence.
    """
    if ai is not None and geocoded is not None:
        distance = haversine(ai.latitude, ai.longitude, geocoded.latitude, geocoded.longitude)
        geocoder_confidence = geocoded.confidence if geocoded.confidence is not None else DEFAULT_GEOCODER_CONFIDENCE
        ai_confidence = ai.confidence if ai.confidence is not None else DEFAULT_AI_CONFIDENCE
        logger.info("Coordinate comparison - distance: %.2fkm", distance)

        if distance <= VERIFIED_DISTANCE_KM:
            result = _from_candidate(
                geocoded,
                "google_maps_verified",
                max(geocoder_confidence, ai_confidence),
                distance_km=distance,
                alternative=ai
            )
        elif geocoder_confidence > ai_confidence:
            result = _from_candidate(
                geocoded,
                "google_maps_high_confidence",
                geocoder_confidence,
                distance_km=distance,
                alternative=ai
            )
        else:
            result = _from_candidate(
                ai,
                "gemini_high_confidence",
                ai_confidence,
                distance_km=distance,
                alternative=geocoded
            )
    elif ai is not None:
        result = _from_candidate(
            ai,
            "gemini_only",
            ai.confidence if ai.confidence is not None else AI_ONLY_CONFIDENCE
        )
    elif geocoded is not None:
        result = _from_candidate(
            geocoded,
            "google_maps_only",
            geocoded.confidence if geocoded.confidence is not None else GEOCODER_ONLY_CONFIDENCE
        )
    else:
        return ReconciledCoordinates(success=False, error="No coordinate source produced a result")

    result.district = result.district or district
    if result.formatted_address is None:
        result.formatted_address = _fallback_address(village_name, result.district)
    return result
