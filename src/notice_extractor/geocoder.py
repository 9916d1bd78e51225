"""
Village geocoding through the Google Maps Geocoding API.
"""

import json
import logging
import time
from typing import Dict, List, Optional, Tuple

import requests
from rapidfuzz import fuzz

from .config import DISTRICTS_FILE, GEOCODE_BATCH_DELAY, GEOCODING_ENDPOINT, GEOCODING_STATE_SUFFIX
from .exceptions import ConfigurationError, GeocodingApiError, NoticeError, ValidationError
from .models import GeocodeResult
from .text_cleaner import clean_village_name

logger = logging.getLogger(__name__)

GEOCODING_MIN_NAME_LENGTH = 3

# Google address component type -> our field
COMPONENT_FIELDS = (
    ("administrative_area_level_2", "district"),
    ("administrative_area_level_3", "taluka"),
    ("administrative_area_level_1", "state"),
    ("country", "country"),
)


def parse_address_components(components: List[dict]) -> Dict[str, Optional[str]]:
    """Pick district/taluka/state/country out of Maps address components."""
    parsed = {name: None for _, name in COMPONENT_FIELDS}
    for component in components or []:
        types = component.get("types", [])
        for type_tag, name in COMPONENT_FIELDS:
            if type_tag in types:
                parsed[name] = component.get("long_name")
                break
    return parsed


class VillageGeocoder:
    """Resolves village names to coordinates"""

    # Fuzzy-match acceptance for district names
    DISTRICT_MATCH_THRESHOLD = 85
    DISTRICT_SCORE_GAP = 8

    def __init__(
        self,
        api_key: Optional[str] = None,
        districts_file: Optional[str] = None,
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
        sleep=time.sleep
    ):
        """
        Initialize the geocoder.

        Args:
            api_key: Google Maps API key (GOOGLE_MAPS_API_KEY)
            districts_file: Path to districts JSON file (default: config/districts.json)
            timeout: Request timeout in seconds
            session: Optional requests session
            sleep: Delay function used between batch calls
        """
        if districts_file is None:
            districts_file = str(DISTRICTS_FILE)
        self.api_key = api_key
        self.districts = self._load_districts(districts_file)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings) -> "VillageGeocoder":
        return cls(api_key=settings.maps_api_key, timeout=settings.request_timeout)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _load_districts(self, districts_file: str) -> Dict[str, str]:
        """Load districts and build a lookup of every known spelling -> canonical name"""
        try:
            with open(districts_file, 'r', encoding='utf-8') as f:
                districts_list = json.load(f)
        except FileNotFoundError:
            logger.warning("Districts file '%s' not found, district names are used as given", districts_file)
            return {}

        lookup = {}
        for district in districts_list:
            canonical = district["name"]
            for spelling in [canonical, district.get("gujarati")] + district.get("aliases", []):
                if spelling:
                    lookup[spelling.lower()] = canonical
        return lookup

    def normalize_district(self, district: Optional[str]) -> Optional[str]:
        """
        Map a district name (English or Gujarati, possibly misspelled) to its
        canonical English name. Unclear matches are returned unchanged.
        """
        if not district or not district.strip():
            return None
        district = district.strip()
        district_lower = district.lower()

        if district_lower in self.districts:
            return self.districts[district_lower]

        scores: List[Tuple[str, float]] = []
        for spelling, canonical in self.districts.items():
            combined_score = max(
                fuzz.partial_ratio(district_lower, spelling),
                fuzz.ratio(district_lower, spelling) * 0.9,
                fuzz.token_sort_ratio(district_lower, spelling) * 0.85
            )
            scores.append((canonical, combined_score))

        # Best score per canonical district
        best: Dict[str, float] = {}
        for canonical, score in scores:
            best[canonical] = max(score, best.get(canonical, 0))
        ranked = sorted(best.items(), key=lambda x: x[1], reverse=True)
        if not ranked:
            return district

        top_match, top_score = ranked[0]
        second_score = ranked[1][1] if len(ranked) > 1 else 0
        if top_score >= self.DISTRICT_MATCH_THRESHOLD and (top_score - second_score) >= self.DISTRICT_SCORE_GAP:
            if top_match != district:
                logger.info("District %r matched to %r (score %.1f)", district, top_match, top_score)
            return top_match
        return district

    def build_query(self, village_name: str, district: Optional[str] = None, state: str = GEOCODING_STATE_SUFFIX) -> str:
        parts = [clean_village_name(village_name, min_length=GEOCODING_MIN_NAME_LENGTH)]
        district = self.normalize_district(district)
        if district:
            parts.append(district)
        parts.append(state)
        return ", ".join(parts)

    def geocode_village(
        self,
        village_name: str,
        district: Optional[str] = None,
        state: str = GEOCODING_STATE_SUFFIX
    ) -> GeocodeResult:
        """
        Geocode a village name.

        Returns:
            GeocodeResult with status "success", or "not_found" for ZERO_RESULTS

        Raises:
            ValidationError: If the village name is empty
            ConfigurationError: If no Maps key is configured
            GeocodingApiError: On transport errors or any other non-OK status
        """
        if not village_name or not village_name.strip():
            raise ValidationError("Village name is required for geocoding")

        if not self.api_key:
            raise ConfigurationError(
                "Google Maps API key not configured. Please set GOOGLE_MAPS_API_KEY",
                code="GOOGLE_MAPS_API_KEY_MISSING"
            )

        search_query = self.build_query(village_name, district, state)
        logger.info("Geocoding query: %s", search_query)

        try:
            response = self.session.get(
                GEOCODING_ENDPOINT,
                params={
                    "address": search_query,
                    "key": self.api_key,
                    "region": "in",
                    "language": "en",
                },
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise GeocodingApiError(f"Google Maps API request failed: {e}")
        except ValueError as e:
            raise GeocodingApiError(f"Google Maps API returned invalid JSON: {e}")

        status = data.get("status")
        if status == "ZERO_RESULTS":
            logger.info("No results found for: %s", search_query)
            return GeocodeResult(
                success=False,
                status="not_found",
                search_query=search_query,
                error="No location found for this village"
            )

        if status != "OK" or not data.get("results"):
            raise GeocodingApiError(
                f"Google Maps API error: {status} - {data.get('error_message', 'Unknown error')}",
                details={"status": status}
            )

        result = data["results"][0]
        geometry = result.get("geometry", {})
        location = geometry.get("location", {})
        address = parse_address_components(result.get("address_components"))

        logger.info("Geocoded %s to %s, %s", search_query, location.get("lat"), location.get("lng"))
        return GeocodeResult(
            success=True,
            status="success",
            search_query=search_query,
            latitude=location.get("lat"),
            longitude=location.get("lng"),
            formatted_address=result.get("formatted_address"),
            district=address["district"],
            taluka=address["taluka"],
            state=address["state"],
            country=address["country"],
            place_id=result.get("place_id"),
            location_type=geometry.get("location_type")
        )

    def geocode_batch(self, villages: List[dict], delay: float = GEOCODE_BATCH_DELAY) -> List[dict]:
        """
        Geocode villages one at a time with a fixed delay before each call.

        Each entry is a dict with ``name`` and optional ``district``. The
        result is the same dict plus a ``geocoding`` key; a failure for one
        village is recorded there and does not stop the batch.
        """
        results = []
        for village in villages:
            self.sleep(delay)
            try:
                geocoding = self.geocode_village(village.get("name"), village.get("district")).to_dict()
            except NoticeError as e:
                logger.error("Failed to geocode %s: %s", village.get("name"), e)
                geocoding = {"success": False, "status": "error", "error": e.message}
            results.append({**village, "geocoding": geocoding})
        return results

    def test_connection(self) -> dict:
        try:
            result = self.geocode_village("Rajkot", "Rajkot")
        except NoticeError as e:
            logger.error("Geocoding API test failed: %s", e)
            return {"success": False, "message": "Google Maps Geocoding API connection failed", "error": e.message}
        return {
            "success": result.success,
            "message": "Google Maps Geocoding API connection successful" if result.success
            else "Google Maps Geocoding API returned no result for Rajkot"
        }
