"""
Dashboard helpers: record filtering, map links and CSV export.
"""

import csv
import io
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

CSV_COLUMNS = [
    "Village",
    "Survey No.",
    "Buyer",
    "Seller",
    "Property Listing Date",
    "District",
    "Scanned Date",
    "Latitude",
    "Longitude",
    "Map Link",
]

SEARCH_FIELDS = ("village_name", "survey_number", "buyer_name", "seller_name")


def map_links(latitude: Optional[float], longitude: Optional[float]) -> Optional[Dict[str, str]]:
    """Google Maps view and directions URLs, or None without coordinates."""
    if latitude is None or longitude is None:
        return None
    return {
        "view": f"https://www.google.com/maps/@{latitude},{longitude},15z",
        "directions": f"https://www.google.com/maps/dir//{latitude},{longitude}",
    }


def with_map_links(notice: Dict[str, Any]) -> Dict[str, Any]:
    return {**notice, "map_links": map_links(notice.get("latitude"), notice.get("longitude"))}


def _contains(value: Optional[str], needle: str) -> bool:
    return bool(value) and needle in value.lower()


def filter_notices(
    notices: Iterable[Dict[str, Any]],
    village: Optional[str] = None,
    district: Optional[str] = None,
    search: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Case-insensitive substring filters. ``search`` matches any of village,
    survey number, buyer or seller.
    """
    village = village.lower() if village else None
    district = district.lower() if district else None
    search = search.lower() if search else None

    filtered = []
    for notice in notices:
        if village and not _contains(notice.get("village_name"), village):
            continue
        if district and not _contains(notice.get("district"), district):
            continue
        if search and not any(_contains(notice.get(field), search) for field in SEARCH_FIELDS):
            continue
        filtered.append(notice)
    return filtered


def _scanned_date(uploaded_at: Optional[str]) -> str:
    if not uploaded_at:
        return ""
    try:
        return datetime.fromisoformat(uploaded_at).strftime("%d/%m/%Y")
    except ValueError:
        return uploaded_at


def notices_to_csv(notices: Iterable[Dict[str, Any]]) -> str:
    """Render notices in the dashboard's CSV layout."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for notice in notices:
        links = map_links(notice.get("latitude"), notice.get("longitude"))
        writer.writerow([
            notice.get("village_name") or "",
            notice.get("survey_number") or "",
            notice.get("buyer_name") or "",
            notice.get("seller_name") or "",
            notice.get("notice_date") or "",
            notice.get("district") or "",
            _scanned_date(notice.get("uploaded_at")),
            "" if notice.get("latitude") is None else notice["latitude"],
            "" if notice.get("longitude") is None else notice["longitude"],
            links["view"] if links else "",
        ])
    return buffer.getvalue()


def export_filename(today: Optional[datetime] = None) -> str:
    today = today or datetime.now()
    return f"property_notices_{today.strftime('%Y-%m-%d')}.csv"
