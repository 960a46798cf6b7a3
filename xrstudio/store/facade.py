"""Backend selection: MongoDB in the managed deployment, embedded SQLite otherwise.

Usage mirrors the MongoDB driver so route code does not care which backend is
active::

    store = get_store()
    activities = store.database("cluster0").collection("activities")
    activity = await activities.find_one({"_id": activity_id})

In document-database mode the driver's native collection is returned as-is;
query features beyond the emulated subset (regex, ranges, aggregation) only
work there.
"""

from __future__ import annotations

import enum
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine

from ..config import StudioSettings, settings
from ..database import get_engine
from .collection import DocumentCollection
from .errors import ConfigurationError
from .schema import init_schema

log = logging.getLogger(__name__)


class BackendMode(str, enum.Enum):
    DOCUMENT_DB = "document_db"
    EMBEDDED = "embedded"


def select_backend(settings_obj: StudioSettings) -> BackendMode:
    if settings_obj.uses_document_db:
        return BackendMode.DOCUMENT_DB
    return BackendMode.EMBEDDED


class StoreDatabase:
    """Second level of the ``database(name).collection(name)`` accessor."""

    def __init__(self, store: "DocumentStore", name: str):
        self._store = store
        self.name = name

    def collection(self, name: str):
        return self._store._collection(self.name, name)

    def __getitem__(self, name: str):
        return self.collection(name)


class DocumentStore:
    def __init__(
        self,
        settings_obj: StudioSettings | None = None,
        *,
        mode: BackendMode | None = None,
        engine: AsyncEngine | None = None,
        mongo_client: Any = None,
    ):
        self.settings = settings_obj or settings
        self.mode = mode or select_backend(self.settings)
        self._engine = engine
        self._mongo_client = mongo_client
        self._collections: dict[str, DocumentCollection] = {}
        self._initialized = False
        log.info("Document store backend: %s", self.mode.value)

    @property
    def is_embedded(self) -> bool:
        return self.mode is BackendMode.EMBEDDED

    @property
    def engine(self) -> AsyncEngine:
        if not self.is_embedded:
            raise ConfigurationError("The document-database backend has no SQLite engine")
        if self._engine is None:
            self._engine = get_engine(self.settings.database_path)
        return self._engine

    def database(self, name: str | None = None) -> StoreDatabase:
        return StoreDatabase(self, name or self.settings.mongodb_database)

    def collection(self, name: str):
        return self.database().collection(name)

    async def initialize(self) -> None:
        if self.is_embedded:
            await init_schema(self.engine)
        self._initialized = True

    async def ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def close(self) -> None:
        if self._mongo_client is not None and hasattr(self._mongo_client, "close"):
            result = self._mongo_client.close()
            if hasattr(result, "__await__"):
                await result
        if self._engine is not None:
            await self._engine.dispose()

    def _collection(self, database: str, name: str):
        if not self.is_embedded:
            return self._mongo()[database][name]
        # One SQLite file serves every database name.
        collection = self._collections.get(name)
        if collection is None:
            collection = DocumentCollection(self.engine, name)
            self._collections[name] = collection
        return collection

    def _mongo(self):
        if self._mongo_client is None:
            uri = (self.settings.mongodb_uri or "").strip()
            if not uri:
                raise ConfigurationError("XRSTUDIO_MONGODB_URI is required for the document-database backend")
            from pymongo import AsyncMongoClient

            self._mongo_client = AsyncMongoClient(uri)
        return self._mongo_client


_store: DocumentStore | None = None


def get_store() -> DocumentStore:
    """Process-wide store; the backend is chosen once per cold start."""
    global _store
    if _store is None:
        _store = DocumentStore(settings)
    return _store


def reset_store() -> None:
    global _store
    _store = None
