"""
Tests for coordinate reconciliation.
"""

import pytest

from notice_extractor.models import CoordinateCandidate
from notice_extractor.reconcile import haversine, reconcile_coordinates

# Kilometres per degree of latitude on a 6371 km sphere
KM_PER_DEGREE = 111.19492664455873


def _ai(lat, lng, confidence=None):
    return CoordinateCandidate(latitude=lat, longitude=lng, source="gemini", confidence=confidence)


def _maps(lat, lng, confidence=None):
    return CoordinateCandidate(
        latitude=lat,
        longitude=lng,
        source="google_maps",
        confidence=confidence,
        district="Rajkot",
        taluka="Gondal",
        formatted_address="Ribda, Gujarat 360311, India",
    )


class TestHaversine:
    def test_zero_distance(self):
        assert haversine(22.0, 70.0, 22.0, 70.0) == 0

    def test_one_degree_of_latitude(self):
        assert haversine(22.0, 70.0, 23.0, 70.0) == pytest.approx(KM_PER_DEGREE)


class TestReconcileCoordinates:
    def test_close_sources_pick_geocoder_as_verified(self):
        geocoded = _maps(22.0, 70.0)
        ai = _ai(22.0 + 3 / KM_PER_DEGREE, 70.0)

        result = reconcile_coordinates(ai, geocoded, "રીબડા", "Rajkot")

        assert result.success
        assert result.coordinate_source == "google_maps_verified"
        assert (result.latitude, result.longitude) == (22.0, 70.0)
        assert result.distance_km == pytest.approx(3.0)
        assert result.confidence_score == 0.8
        assert result.alternative is ai

    def test_verified_confidence_is_the_higher_of_the_two(self):
        result = reconcile_coordinates(_ai(22.0, 70.0, 0.95), _maps(22.01, 70.0))
        assert result.confidence_score == 0.95

    def test_distant_sources_prefer_higher_confidence_geocoder(self):
        result = reconcile_coordinates(_ai(23.0, 70.0, 0.5), _maps(22.0, 70.0, 0.9))
        assert result.coordinate_source == "google_maps_high_confidence"
        assert result.latitude == 22.0
        assert result.confidence_score == 0.9

    def test_distant_sources_prefer_higher_confidence_ai(self):
        result = reconcile_coordinates(_ai(23.0, 70.0, 0.9), _maps(22.0, 70.0, 0.5))
        assert result.coordinate_source == "gemini_high_confidence"
        assert result.latitude == 23.0
        assert result.alternative.source == "google_maps"

    def test_confidence_tie_goes_to_ai(self):
        result = reconcile_coordinates(_ai(23.0, 70.0, 0.8), _maps(22.0, 70.0, 0.8))
        assert result.coordinate_source == "gemini_high_confidence"

    def test_ai_only(self):
        result = reconcile_coordinates(_ai(22.3, 70.8), None, "રીબડા", "Rajkot")
        assert result.coordinate_source == "gemini_only"
        assert result.confidence_score == 0.6
        assert result.district == "Rajkot"
        assert result.formatted_address == "રીબડા, Rajkot, Gujarat"

    def test_geocoder_only(self):
        result = reconcile_coordinates(None, _maps(22.0, 70.0))
        assert result.coordinate_source == "google_maps_only"
        assert result.confidence_score == 0.7
        assert result.formatted_address == "Ribda, Gujarat 360311, India"

    def test_no_sources(self):
        result = reconcile_coordinates(None, None)
        assert not result.success
        assert result.latitude is None and result.longitude is None
        assert result.error
