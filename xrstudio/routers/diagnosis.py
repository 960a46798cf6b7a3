"""Store diagnostics endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..services.diagnostics_svc import diagnose_activity
from ..store import DocumentStore, Relations
from ..tenant.deps import get_current_org_id, get_document_store, get_relations

router = APIRouter(tags=["diagnosis"])


@router.get("/api/diagnosis")
async def diagnosis(
    activityId: str | None = None,
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
    relations: Relations = Depends(get_relations),
):
    if not activityId:
        raise HTTPException(status_code=400, detail="Activity ID is required")
    return await diagnose_activity(store, relations, activityId)
