"""Async test fixtures for the XR studio store using temporary SQLite files."""

from __future__ import annotations

import copy
from contextlib import asynccontextmanager
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import ASGITransport, AsyncClient
from pymongo.errors import DuplicateKeyError

from xrstudio.config import StudioSettings
from xrstudio.database import create_engine_for_path
from xrstudio.store import BackendMode, DocumentStore, Relations
from xrstudio.store.query import apply_update, parse_filter, parse_update
from xrstudio.tenant.deps import get_document_store, get_objects

ORG_ID = "org-1"
TEST_SECRET = "xrstudio-test-secret-0123456789abcdef"


class InMemoryObjectStore:
    """Object store double that keeps uploads in a dict."""

    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.deleted: list[str] = []

    async def upload(self, content: bytes, filename: str, mime_type: str) -> str:
        key = f"documents/{filename}"
        self.objects[key] = (content, mime_type)
        return key

    async def signed_url(self, key: str, expires_in: int = 3600) -> str:
        return f"https://objects.test/{key}?expires={expires_in}"

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)
        self.deleted.append(key)


class FakeMongoClient:
    """In-memory stand-in for the async driver: ``client[db][name]``.

    Like the real driver, ``insert_one`` gives a document without ``_id`` an
    ``ObjectId`` and writes it back into the caller's mapping, so code that
    forgets to assign its own string id fails here the same way.
    """

    def __init__(self):
        self.databases: dict[str, dict[str, FakeMongoCollection]] = {}

    def __getitem__(self, database: str) -> "_FakeMongoDatabase":
        return _FakeMongoDatabase(self.databases.setdefault(database, {}))


class _FakeMongoDatabase:
    def __init__(self, collections: dict):
        self._collections = collections

    def __getitem__(self, name: str) -> "FakeMongoCollection":
        return self._collections.setdefault(name, FakeMongoCollection(name))


class FakeMongoCollection:
    def __init__(self, name: str):
        self.name = name
        self.rows: list[dict] = []

    async def insert_one(self, document: dict):
        if "_id" not in document:
            document["_id"] = ObjectId()
        if any(row["_id"] == document["_id"] for row in self.rows):
            raise DuplicateKeyError(f"duplicate _id {document['_id']!r}")
        self.rows.append(copy.deepcopy(document))
        return SimpleNamespace(inserted_id=document["_id"], acknowledged=True)

    async def find_one(self, query=None):
        for row in self._matching(query):
            return copy.deepcopy(row)
        return None

    def find(self, query=None) -> "_FakeMongoCursor":
        return _FakeMongoCursor(self, query)

    async def update_one(self, query, update):
        for index, row in enumerate(self.rows):
            if parse_filter(query).matches(row):
                new_row, changed = apply_update(row, parse_update(update))
                self.rows[index] = new_row
                return SimpleNamespace(matched_count=1, modified_count=int(changed))
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, query):
        for row in self._matching(query):
            self.rows.remove(row)
            return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def _matching(self, query) -> list[dict]:
        parsed = parse_filter(query)
        return [row for row in self.rows if parsed.matches(row)]


class _FakeMongoCursor:
    def __init__(self, collection: FakeMongoCollection, query):
        self._collection = collection
        self._query = query
        self._sort: list[tuple[str, int]] = []

    def sort(self, key, direction=1):
        self._sort.extend(key if isinstance(key, list) else [(key, direction)])
        return self

    async def to_list(self, length=None):
        rows = [copy.deepcopy(row) for row in self._collection._matching(self._query)]
        for key, direction in reversed(self._sort):
            rows.sort(key=lambda row: str(row.get(key, "")), reverse=direction == -1)
        return rows[:length] if length else rows

    async def __aiter__(self):
        for row in await self.to_list():
            yield row


@pytest.fixture
def test_settings(tmp_path: Path) -> StudioSettings:
    return StudioSettings(
        _env_file=None,
        sqlite_path=str(tmp_path / "store.db"),
        api_secret_key=TEST_SECRET,
    )


@pytest_asyncio.fixture
async def engine(tmp_path: Path):
    eng = create_engine_for_path(tmp_path / "store.db", echo=False)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def store(test_settings: StudioSettings, engine):
    st = DocumentStore(test_settings, mode=BackendMode.EMBEDDED, engine=engine)
    await st.initialize()
    return st


@pytest_asyncio.fixture
async def docdb_store(test_settings: StudioSettings):
    return DocumentStore(
        test_settings,
        mode=BackendMode.DOCUMENT_DB,
        mongo_client=FakeMongoClient(),
    )


@pytest.fixture
def relations(store: DocumentStore) -> Relations:
    return Relations(store)


@pytest.fixture
def objects() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest_asyncio.fixture
async def activity(store: DocumentStore) -> dict:
    result = await store.collection("activities").insert_one(
        {"_id": "A1", "name": "Welding basics", "orgId": ORG_ID, "ragEnabled": True}
    )
    return result.document


@asynccontextmanager
async def _app_client(store: DocumentStore, objects: InMemoryObjectStore, monkeypatch):
    from xrstudio.app import app
    from xrstudio.config import settings

    monkeypatch.setattr(settings, "api_secret_key", TEST_SECRET)

    async def override_store():
        return store

    app.dependency_overrides[get_document_store] = override_store
    app.dependency_overrides[get_objects] = lambda: objects

    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(
            transport=transport, base_url="http://test", headers={"X-Org-Id": ORG_ID}
        ) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(store: DocumentStore, objects: InMemoryObjectStore, monkeypatch):
    """HTTPX async test client against the XR studio app."""
    async with _app_client(store, objects, monkeypatch) as c:
        yield c


@pytest_asyncio.fixture
async def docdb_client(docdb_store: DocumentStore, objects: InMemoryObjectStore, monkeypatch):
    """Same client, with the app running in document-database mode."""
    async with _app_client(docdb_store, objects, monkeypatch) as c:
        yield c
