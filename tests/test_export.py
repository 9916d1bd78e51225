"""
Tests for dashboard filtering, map links and CSV export.
"""

import csv
import io
from datetime import datetime

from notice_extractor.export import (
    CSV_COLUMNS,
    export_filename,
    filter_notices,
    map_links,
    notices_to_csv,
    with_map_links,
)

NOTICES = [
    {
        "id": "a",
        "village_name": "રીબડા",
        "survey_number": "367",
        "buyer_name": "Ramesh Patel",
        "seller_name": "Suresh Shah",
        "notice_date": "2025-07-18",
        "district": "Rajkot",
        "uploaded_at": "2025-07-20T10:00:00+00:00",
        "latitude": 21.95,
        "longitude": 70.78,
    },
    {
        "id": "b",
        "village_name": "શાપર",
        "survey_number": "12",
        "buyer_name": None,
        "seller_name": "Mahesh Joshi",
        "notice_date": None,
        "district": "Rajkot",
        "uploaded_at": None,
        "latitude": None,
        "longitude": None,
    },
]


class TestMapLinks:
    def test_links(self):
        links = map_links(21.95, 70.78)
        assert links["view"] == "https://www.google.com/maps/@21.95,70.78,15z"
        assert links["directions"] == "https://www.google.com/maps/dir//21.95,70.78"

    def test_no_coordinates(self):
        assert map_links(None, 70.78) is None
        assert with_map_links(NOTICES[1])["map_links"] is None


class TestFilterNotices:
    def test_village_filter(self):
        assert [n["id"] for n in filter_notices(NOTICES, village="રીબ")] == ["a"]

    def test_district_filter_is_case_insensitive(self):
        assert len(filter_notices(NOTICES, district="rajKOT")) == 2

    def test_search_covers_buyer_and_seller(self):
        assert [n["id"] for n in filter_notices(NOTICES, search="joshi")] == ["b"]
        assert [n["id"] for n in filter_notices(NOTICES, search="ramesh")] == ["a"]
        assert [n["id"] for n in filter_notices(NOTICES, search="367")] == ["a"]

    def test_no_filters(self):
        assert filter_notices(NOTICES) == NOTICES


class TestCsvExport:
    def test_layout(self):
        rows = list(csv.reader(io.StringIO(notices_to_csv(NOTICES))))

        assert rows[0] == CSV_COLUMNS
        assert rows[1] == [
            "રીબડા", "367", "Ramesh Patel", "Suresh Shah", "2025-07-18", "Rajkot",
            "20/07/2025", "21.95", "70.78", "https://www.google.com/maps/@21.95,70.78,15z",
        ]
        assert rows[2][-3:] == ["", "", ""]
        assert rows[2][6] == ""

    def test_filename(self):
        assert export_filename(datetime(2025, 7, 20)) == "property_notices_2025-07-20.csv"
