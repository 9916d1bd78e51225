"""
Firestore persistence for property notices and their processing logs.

Two collections are used: ``property_notices`` holds one flat document per
notice (keyed by a uuid4) and ``processing_logs`` holds the diagnostic
history, linked through ``property_notice_id``.
"""

import contextlib
import json
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2 import service_account

from .exceptions import ConfigurationError, NoticeNotFoundError, StoreError, ValidationError
from .models import NoticeFields
from .text_cleaner import parse_notice_date

logger = logging.getLogger(__name__)

NOTICES_COLLECTION = "property_notices"
LOGS_COLLECTION = "processing_logs"

PENDING_GEOCODING_STATUSES = ["pending", "failed", "error"]


def to_storage_date(value) -> Optional[datetime]:
    """D/M/Y text (or a date) to a UTC-midnight datetime, which Firestore can hold."""
    parsed = parse_notice_date(value)
    if parsed is None:
        return None
    return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)


def render_date(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def render_timestamp(value) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _to_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def coordinate_pair(latitude, longitude):
    """Return (lat, lng) as floats, or (None, None) unless both are usable."""
    latitude, longitude = _to_float(latitude), _to_float(longitude)
    if latitude is None or longitude is None:
        if latitude is not None or longitude is not None:
            logger.warning("Dropping incomplete coordinate pair (%s, %s)", latitude, longitude)
        return None, None
    return latitude, longitude


def render_notice(doc_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Stored document -> JSON-ready dict"""
    record = dict(data)
    record["id"] = doc_id
    record["uploaded_at"] = render_timestamp(data.get("uploaded_at"))
    record["updated_at"] = render_timestamp(data.get("updated_at"))
    record["notice_date"] = render_date(data.get("notice_date"))
    return record


@contextlib.contextmanager
def store_errors(action: str):
    """Translate Google API failures into StoreError."""
    try:
        yield
    except google_exceptions.PermissionDenied as e:
        logger.error("Firestore permission denied during %s: %s", action, e)
        raise StoreError(
            f"Database permission denied: {e.message}",
            code="FIREBASE_PERMISSION_DENIED",
            status_code=403
        )
    except google_exceptions.GoogleAPIError as e:
        logger.error("Firestore error during %s: %s", action, e)
        raise StoreError(f"Database {action} failed: {e}")


class NoticeStore:
    """Reads and writes notices in Firestore"""

    def __init__(
        self,
        client=None,
        service_account_key: Optional[str] = None,
        application_credentials: Optional[str] = None,
        project_id: Optional[str] = None
    ):
        """
        Initialize the store. The Firestore client is created on first use.

        Args:
            client: Existing Firestore client, used as-is
            service_account_key: Service-account JSON text (FIREBASE_SERVICE_ACCOUNT_KEY)
            application_credentials: Path in GOOGLE_APPLICATION_CREDENTIALS
            project_id: Firestore project id (FIREBASE_PROJECT_ID)
        """
        self._db = client
        self.service_account_key = service_account_key
        self.application_credentials = application_credentials
        self.project_id = project_id

    @classmethod
    def from_settings(cls, settings) -> "NoticeStore":
        return cls(
            service_account_key=settings.firebase_service_account_key,
            application_credentials=settings.google_application_credentials,
            project_id=settings.firebase_project_id
        )

    @property
    def is_configured(self) -> bool:
        return self._db is not None or bool(self.service_account_key or self.application_credentials)

    @property
    def db(self):
        if self._db is None:
            self._db = self._create_client()
        return self._db

    def _create_client(self):
        if self.service_account_key:
            try:
                info = json.loads(self.service_account_key)
            except ValueError as e:
                raise ConfigurationError(f"FIREBASE_SERVICE_ACCOUNT_KEY is not valid JSON: {e}")
            credentials = service_account.Credentials.from_service_account_info(info)
            client = firestore.Client(project=info.get("project_id") or self.project_id, credentials=credentials)
        elif self.application_credentials:
            client = firestore.Client(project=self.project_id)
        else:
            raise ConfigurationError(
                "Firebase credentials not configured. Set FIREBASE_SERVICE_ACCOUNT_KEY or GOOGLE_APPLICATION_CREDENTIALS",
                code="FIREBASE_CREDENTIALS_MISSING"
            )
        logger.info("Firestore client initialized for project %s", client.project)
        return client

    @property
    def notices(self):
        return self.db.collection(NOTICES_COLLECTION)

    @property
    def logs(self):
        return self.db.collection(LOGS_COLLECTION)

    def save_notice(
        self,
        extracted_data: Dict[str, Any],
        raw_text: Optional[str] = None,
        confidence_score: Optional[float] = None,
        processing_time_ms: Optional[int] = None,
        processing_status: str = "completed",
        ai_service: str = "firebase_integration",
        filename: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Store a new notice under a fresh id and log the extraction step.

        Returns:
            The stored record, rendered like ``get_notice``
        """
        extracted_data = dict(extracted_data or {})
        notice_id = str(uuid.uuid4())
        latitude, longitude = coordinate_pair(extracted_data.get("latitude"), extracted_data.get("longitude"))

        record = NoticeFields.from_dict(extracted_data).to_dict()
        record.update({
            "id": notice_id,
            "notice_date": to_storage_date(extracted_data.get("notice_date")),
            "raw_text": raw_text,
            "extracted_data": extracted_data,
            "confidence_score": confidence_score,
            "processing_status": processing_status,
            "ai_service": ai_service,
            "filename": filename,
            "latitude": latitude,
            "longitude": longitude,
            "full_address": extracted_data.get("full_address"),
            "geocoding_status": extracted_data.get("geocoding_status") or "pending",
            "geocoding_error": extracted_data.get("geocoding_error"),
            "processing_time_ms": processing_time_ms,
            "uploaded_at": firestore.SERVER_TIMESTAMP,
            "updated_at": firestore.SERVER_TIMESTAMP,
        })

        with store_errors("save"):
            doc_ref = self.notices.document(notice_id)
            # create() fails instead of overwriting an existing id
            doc_ref.create(record)
            stored = doc_ref.get()

        logger.info("Property notice saved to Firestore with ID: %s", notice_id)
        self.log_step(notice_id, "EXTRACTION_COMPLETED", "success", processing_time_ms=processing_time_ms)
        return render_notice(notice_id, stored.to_dict())

    def get_notice(self, notice_id: str) -> Optional[Dict[str, Any]]:
        with store_errors("fetch"):
            snapshot = self.notices.document(notice_id).get()
        if not snapshot.exists:
            return None
        return render_notice(snapshot.id, snapshot.to_dict())

    def list_notices(self, limit: int = 1000, start_after: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent first. ``start_after`` is the id of the last notice of the previous page."""
        with store_errors("fetch"):
            query = self.notices.order_by("uploaded_at", direction=firestore.Query.DESCENDING).limit(limit)
            if start_after:
                cursor = self.notices.document(start_after).get()
                if cursor.exists:
                    query = query.start_after(cursor)
            notices = [render_notice(doc.id, doc.to_dict()) for doc in query.stream()]

        logger.info("Retrieved %d property notices", len(notices))
        return notices

    def list_all_notices(self, page_size: int = 500) -> List[Dict[str, Any]]:
        """Every stored notice, most recent first, read page by page."""
        notices: List[Dict[str, Any]] = []
        start_after = None
        while True:
            page = self.list_notices(limit=page_size, start_after=start_after)
            notices.extend(page)
            if len(page) < page_size:
                return notices
            start_after = page[-1]["id"]

    def update_notice(self, notice_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge ``updates`` into a stored notice and return the updated record.

        Raises:
            NoticeNotFoundError: If the notice does not exist
            ValidationError: If only one of latitude/longitude is supplied
        """
        updates = {key: value for key, value in updates.items() if key != "id"}
        if ("latitude" in updates) != ("longitude" in updates):
            raise ValidationError("latitude and longitude must be updated together")
        if "latitude" in updates:
            updates["latitude"], updates["longitude"] = coordinate_pair(updates["latitude"], updates["longitude"])
        if isinstance(updates.get("notice_date"), (str, date)):
            updates["notice_date"] = to_storage_date(updates["notice_date"])
        updates["updated_at"] = firestore.SERVER_TIMESTAMP

        with store_errors("update"):
            try:
                self.notices.document(notice_id).update(updates)
            except google_exceptions.NotFound:
                raise NoticeNotFoundError(f"Property notice {notice_id} not found")

        return self.get_notice(notice_id)

    def update_location(self, notice_id: str, location: Dict[str, Any]) -> Dict[str, Any]:
        """
        Write geocoding output onto a notice.

        Coordinates and address fields are only touched when the location
        carries a full coordinate pair, so a failed lookup records its status
        without erasing earlier coordinates.
        """
        updates = {
            "geocoding_status": location.get("status") or "completed",
            "geocoding_error": location.get("error"),
        }
        latitude, longitude = coordinate_pair(location.get("latitude"), location.get("longitude"))
        if latitude is not None:
            updates.update({
                "latitude": latitude,
                "longitude": longitude,
                "full_address": location.get("formatted_address") or location.get("full_address"),
            })
            for key in ("district", "taluka"):
                if location.get(key):
                    updates[key] = location[key]
        return self.update_notice(notice_id, updates)

    def delete_notice(self, notice_id: str) -> bool:
        """Delete a notice and all of its processing logs in one batch."""
        with store_errors("delete"):
            doc_ref = self.notices.document(notice_id)
            if not doc_ref.get().exists:
                return False

            log_docs = list(self.logs.where(filter=FieldFilter("property_notice_id", "==", notice_id)).stream())
            batch = self.db.batch()
            batch.delete(doc_ref)
            for log_doc in log_docs:
                batch.delete(log_doc.reference)
            batch.commit()

        logger.info("Deleted property notice %s and %d processing logs", notice_id, len(log_docs))
        return True

    def log_step(
        self,
        notice_id: str,
        step: str,
        status: str,
        error_message: Optional[str] = None,
        processing_time_ms: Optional[int] = None
    ) -> None:
        """Append a processing log entry. Failures are logged, never raised."""
        entry = {
            "id": str(uuid.uuid4()),
            "property_notice_id": notice_id,
            "processing_step": step,
            "status": status,
            "error_message": error_message,
            "processing_time_ms": processing_time_ms,
            "created_at": firestore.SERVER_TIMESTAMP,
        }
        try:
            self.logs.add(entry)
        except (google_exceptions.GoogleAPIError, ConfigurationError) as e:
            logger.error("Error logging processing step %s for %s: %s", step, notice_id, e)

    def logs_for(self, notice_id: str) -> List[Dict[str, Any]]:
        with store_errors("fetch"):
            docs = self.logs.where(filter=FieldFilter("property_notice_id", "==", notice_id)).stream()
            return [
                {**doc.to_dict(), "created_at": render_timestamp(doc.to_dict().get("created_at"))}
                for doc in docs
            ]

    def villages_needing_geocoding(self) -> List[Dict[str, Any]]:
        """Notices with a village name but no coordinates yet."""
        with store_errors("query"):
            query = self.notices.where(filter=FieldFilter("geocoding_status", "in", PENDING_GEOCODING_STATUSES))
            villages = []
            for doc in query.stream():
                data = doc.to_dict()
                if data.get("village_name") and (data.get("latitude") is None or data.get("longitude") is None):
                    villages.append({
                        "id": doc.id,
                        "village_name": data["village_name"],
                        "district": data.get("district"),
                    })
        return villages

    def stats(self) -> Dict[str, Any]:
        with store_errors("stats query"):
            docs = [doc.to_dict() for doc in self.notices.stream()]
            one_week_ago = datetime.now(timezone.utc) - timedelta(days=7)
            recent = list(self.notices.where(filter=FieldFilter("uploaded_at", ">=", one_week_ago)).stream())

        return {
            "total_notices": len(docs),
            "unique_villages": len({d["village_name"] for d in docs if d.get("village_name")}),
            "recent_notices_7_days": len(recent),
            "geocoded_notices": sum(1 for d in docs if d.get("latitude") is not None),
            "database_type": "Firebase Firestore",
        }

    def test_connection(self) -> dict:
        try:
            with store_errors("connection test"):
                list(self.notices.limit(1).stream())
        except (StoreError, ConfigurationError) as e:
            logger.error("Firebase connection test failed: %s", e)
            return {"success": False, "message": "Firebase connection failed", "error": e.message}
        return {"success": True, "message": "Firebase connection successful"}
