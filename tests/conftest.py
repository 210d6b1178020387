"""
Pytest configuration and shared fixtures.
"""

from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

from api.auth import SessionIssuer
from api.database import APIDatabaseService
from api.dependencies import get_db_service, get_session_issuer, get_storage
from api.main import app
from api.storage import DriveStorageGateway

TEST_SECRET = "test-signing-secret"
SAMPLE_FILE_URL = "https://drive.google.com/uc?id=file123&export=download"


class FakeResult:
    """Stand-in for pymongo write results."""

    def __init__(self, **fields):
        self.acknowledged = True
        self.__dict__.update(fields)


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self.docs = docs

    def sort(self, key, direction=1):
        # Missing values order before any stored value, as in MongoDB
        self.docs = sorted(
            self.docs,
            key=lambda doc: (doc.get(key) is not None, doc.get(key)),
            reverse=direction < 0
        )
        return self

    async def to_list(self, length=None):
        return [dict(doc) for doc in self.docs]


class FakeCollection:
    """In-memory subset of the Motor collection API used by the repositories."""

    def __init__(self):
        self.docs: List[Dict[str, Any]] = []
        self.unique_keys: List[tuple] = []
        self.writes = 0

    @staticmethod
    def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
        return all(doc.get(key) == value for key, value in query.items())

    def _find(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return next((doc for doc in self.docs if self._matches(doc, query)), None)

    async def create_index(self, keys, unique=False):
        if unique:
            fields = (keys,) if isinstance(keys, str) else tuple(field for field, _ in keys)
            self.unique_keys.append(fields)

    async def find_one(self, query):
        doc = self._find(query)
        return dict(doc) if doc else None

    def find(self, query=None):
        return FakeCursor([doc for doc in self.docs if self._matches(doc, query or {})])

    async def count_documents(self, query):
        return len(self.find(query).docs)

    async def insert_one(self, document):
        for fields in self.unique_keys:
            if self._find({field: document.get(field) for field in fields}):
                raise DuplicateKeyError(f"E11000 duplicate key on {fields}")
        document.setdefault("_id", ObjectId())
        self.docs.append(dict(document))
        self.writes += 1
        return FakeResult(inserted_id=document["_id"])

    async def update_one(self, query, update):
        doc = self._find(query)
        if doc is None:
            return FakeResult(matched_count=0, modified_count=0)
        changes = update["$set"]
        modified = any(doc.get(key) != value for key, value in changes.items())
        doc.update(changes)
        self.writes += 1
        return FakeResult(matched_count=1, modified_count=int(modified))

    async def find_one_and_update(self, query, update, return_document=None):
        doc = self._find(query)
        if doc is None:
            return None
        doc.update(update["$set"])
        self.writes += 1
        return dict(doc)

    async def delete_one(self, query):
        doc = self._find(query)
        if doc is None:
            return FakeResult(deleted_count=0)
        self.docs.remove(doc)
        self.writes += 1
        return FakeResult(deleted_count=1)


class FakeDatabase:
    def __init__(self):
        self.collections: Dict[str, FakeCollection] = {}

    def __getitem__(self, name):
        return self.collections.setdefault(name, FakeCollection())

    async def command(self, name):
        return {"ok": 1.0}


@pytest.fixture
def fake_database():
    return FakeDatabase()


@pytest.fixture
def db_service(fake_database):
    """Database service backed by in-memory collections."""
    return APIDatabaseService(fake_database)


@pytest.fixture
def session_issuer():
    return SessionIssuer(TEST_SECRET)


@pytest.fixture
def mock_storage():
    """Mock Drive gateway that always succeeds."""
    storage = AsyncMock(spec=DriveStorageGateway)
    storage.upload.return_value = SAMPLE_FILE_URL
    return storage


@pytest.fixture
def client(db_service, session_issuer, mock_storage):
    """Create test client with in-memory services."""
    app.dependency_overrides[get_db_service] = lambda: db_service
    app.dependency_overrides[get_session_issuer] = lambda: session_issuer
    app.dependency_overrides[get_storage] = lambda: mock_storage
    yield TestClient(app)
    app.dependency_overrides.clear()


def add_user(db_service, email: str, role: str = "user", **fields) -> None:
    """Store a user record directly, bypassing the login rules."""
    db_service.users.collection.docs.append({"email": email, "name": "Test User", "role": role, **fields})


@pytest.fixture
def login(client, db_service, session_issuer):
    """Return a helper that stores a user and sets its session cookie."""
    def _login(email: str, role: str = "user"):
        add_user(db_service, email, role)
        client.cookies.set("token", session_issuer.issue({"email": email}))
        return client
    return _login


@pytest.fixture
def sample_book(db_service):
    """A stored book document."""
    from datetime import datetime, timezone

    doc = {
        "_id": ObjectId(),
        "title": "Pather Panchali",
        "author": "Bibhutibhushan Bandyopadhyay",
        "description": "A novel of rural Bengal",
        "fileUrl": SAMPLE_FILE_URL,
        "uploadedAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }
    db_service.books.collection.docs.append(doc)
    return doc


@pytest.fixture
def sample_pdf():
    """Minimal PDF bytes for upload tests."""
    return b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF"
