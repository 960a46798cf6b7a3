"""Document store - re-exports the collection, facade and relations APIs."""

from .collection import (
    ASCENDING,
    DESCENDING,
    Cursor,
    DeleteResult,
    DocumentCollection,
    InsertOneResult,
    UpdateResult,
    new_id,
)
from .errors import (
    ConcurrentModificationError,
    ConfigurationError,
    DuplicateKeyError,
    SerializationError,
    StorageError,
    StoreUnavailableError,
    UnsupportedQueryError,
)
from .facade import BackendMode, DocumentStore, get_store, reset_store, select_backend
from .relations import Relations

__all__ = [
    "ASCENDING",
    "DESCENDING",
    "Cursor",
    "DeleteResult",
    "DocumentCollection",
    "InsertOneResult",
    "UpdateResult",
    "new_id",
    "ConcurrentModificationError",
    "ConfigurationError",
    "DuplicateKeyError",
    "SerializationError",
    "StorageError",
    "StoreUnavailableError",
    "UnsupportedQueryError",
    "BackendMode",
    "DocumentStore",
    "get_store",
    "reset_store",
    "select_backend",
    "Relations",
]
