"""Exceptions raised by the document store."""

from __future__ import annotations


class StorageError(Exception):
    """Base class for document store failures."""


class ConfigurationError(StorageError):
    """Raised when the selected backend is missing required configuration."""


class StoreUnavailableError(StorageError):
    """Raised when the embedded database handle itself cannot be used."""


class DuplicateKeyError(StorageError):
    """Raised when inserting a document whose ``_id`` already exists."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document '{doc_id}' already exists in '{collection}'")
        self.collection = collection
        self.doc_id = doc_id


class SerializationError(StorageError):
    """Raised when a document cannot be represented as JSON."""


class UnsupportedQueryError(StorageError):
    """Raised for filter or update operators the embedded backend does not emulate."""


class ConcurrentModificationError(StorageError):
    """Raised when a document changed between read and write. Safe to retry."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(
            f"Document '{doc_id}' in '{collection}' was modified concurrently"
        )
        self.collection = collection
        self.doc_id = doc_id
