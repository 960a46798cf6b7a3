"""FastAPI dependencies for organization and store resolution."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from ..assets.objectstore import ObjectStore, get_object_store
from ..config import settings
from ..store import DocumentStore, Relations, get_store


async def get_current_org_id(request: Request) -> str:
    """Organization selected by the auth layer. Raises 401 when absent."""
    org_id = (
        request.headers.get(settings.org_header, "").strip()
        or request.headers.get("x-org-id", "").strip()
    )
    if not org_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return org_id


async def get_document_store() -> DocumentStore:
    store = get_store()
    await store.ensure_initialized()
    return store


async def get_relations(store: DocumentStore = Depends(get_document_store)) -> Relations:
    return Relations(store)


def get_objects() -> ObjectStore:
    return get_object_store()
