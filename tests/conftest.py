"""
Shared fixtures: an in-memory Firestore double and a services container
whose external clients are mocks.
"""

import copy
import itertools
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore

from notice_extractor.config import Settings
from notice_extractor.extractor import NoticeExtractor
from notice_extractor.geocoder import VillageGeocoder
from notice_extractor.ocr import VisionOCR
from notice_extractor.services import Services, reset_services, set_services
from notice_extractor.store import NoticeStore


# ---------------------------------------------------------------------------
# In-memory Firestore
# ---------------------------------------------------------------------------

class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = copy.deepcopy(data)

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeDocument:
    def __init__(self, db, collection, doc_id):
        self._db = db
        self._collection = collection
        self.id = doc_id

    @property
    def _docs(self):
        return self._db.data.setdefault(self._collection, {})

    def get(self):
        return FakeSnapshot(self, self._docs.get(self.id))

    def set(self, data):
        self._docs[self.id] = self._db.resolve(data)

    def create(self, data):
        if self.id in self._docs:
            raise google_exceptions.AlreadyExists(f"Document {self.id} already exists")
        self.set(data)

    def update(self, updates):
        if self.id not in self._docs:
            raise google_exceptions.NotFound(f"No document to update: {self.id}")
        self._docs[self.id].update(self._db.resolve(updates))

    def delete(self):
        self._docs.pop(self.id, None)


class FakeQuery:
    _OPERATORS = {
        "==": lambda a, b: a == b,
        "in": lambda a, b: a in b,
        ">=": lambda a, b: a is not None and a >= b,
    }

    def __init__(self, db, collection, filters=(), order=None, limit=None, cursor=None):
        self._db = db
        self._collection = collection
        self._filters = list(filters)
        self._order = order
        self._limit = limit
        self._cursor = cursor

    def _copy(self, **changes):
        state = {
            "filters": self._filters,
            "order": self._order,
            "limit": self._limit,
            "cursor": self._cursor,
        }
        state.update(changes)
        return FakeQuery(self._db, self._collection, **state)

    def where(self, filter):
        return self._copy(filters=self._filters + [(filter.field_path, filter.op_string, filter.value)])

    def order_by(self, field_path, direction=firestore.Query.ASCENDING):
        return self._copy(order=(field_path, direction))

    def limit(self, count):
        return self._copy(limit=count)

    def start_after(self, snapshot):
        return self._copy(cursor=snapshot.id)

    def stream(self):
        docs = self._db.data.setdefault(self._collection, {})
        snapshots = [
            FakeSnapshot(FakeDocument(self._db, self._collection, doc_id), data)
            for doc_id, data in docs.items()
            if all(self._OPERATORS[op](data.get(field), value) for field, op, value in self._filters)
        ]
        if self._order:
            field, direction = self._order
            snapshots.sort(
                key=lambda s: s.to_dict().get(field),
                reverse=direction == firestore.Query.DESCENDING
            )
        if self._cursor is not None:
            ids = [s.id for s in snapshots]
            if self._cursor in ids:
                snapshots = snapshots[ids.index(self._cursor) + 1:]
        if self._limit is not None:
            snapshots = snapshots[:self._limit]
        return iter(snapshots)

    def get(self):
        return list(self.stream())


class FakeCollection(FakeQuery):
    def document(self, doc_id=None):
        return FakeDocument(self._db, self._collection, doc_id or uuid.uuid4().hex)

    def add(self, data):
        doc_ref = self.document()
        doc_ref.set(data)
        return self._db.now(), doc_ref


class FakeBatch:
    def __init__(self):
        self._deletes = []

    def delete(self, reference):
        self._deletes.append(reference)

    def commit(self):
        for reference in self._deletes:
            reference.delete()
        self._deletes = []


class FakeFirestore:
    """Just enough of google.cloud.firestore.Client for NoticeStore"""

    project = "test-project"

    def __init__(self):
        self.data = {}
        self._clock = itertools.count()
        self._start = datetime.now(timezone.utc)

    def now(self):
        # Strictly increasing so ordering by uploaded_at is deterministic
        return self._start + timedelta(milliseconds=next(self._clock))

    def resolve(self, data):
        resolved = {}
        for key, value in data.items():
            resolved[key] = self.now() if value is firestore.SERVER_TIMESTAMP else copy.deepcopy(value)
        return resolved

    def collection(self, name):
        return FakeCollection(self, name)

    def batch(self):
        return FakeBatch()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_db():
    return FakeFirestore()


@pytest.fixture
def store(fake_db):
    return NoticeStore(client=fake_db)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        gemini_api_key="test-gemini-key",
        vision_api_key="test-vision-key",
        maps_api_key="test-maps-key",
        firebase_project_id="test-project",
        upload_dir=str(tmp_path / "uploads"),
    )


@pytest.fixture
def services(settings, store):
    """Services with a real store over the fake database and mocked clients."""
    ocr = MagicMock(spec=VisionOCR)
    ocr.is_configured = True
    extractor = MagicMock(spec=NoticeExtractor)
    extractor.is_configured = True
    extractor.estimate_coordinates.return_value = None
    geocoder = MagicMock(spec=VillageGeocoder)
    geocoder.is_configured = True

    container = Services(settings=settings, ocr=ocr, extractor=extractor, geocoder=geocoder, store=store)
    set_services(container)
    yield container
    reset_services()
