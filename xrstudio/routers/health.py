"""Health and readiness checks."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text

from ..store import DocumentStore
from ..tenant.deps import get_document_store

router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "xrstudio"}


@router.get("/ready")
async def readiness_check(store: DocumentStore = Depends(get_document_store)):
    if store.is_embedded:
        async with store.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    return {"status": "ready", "service": "xrstudio", "backend": store.mode.value}
