"""Activity routes: org-scoped CRUD and RAG token issue."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from ..schemas.activities import ActivityCreate, ActivityUpdate
from ..schemas.documents import RagTokenResponse
from ..services import activity_svc, token_svc
from ..store import DocumentStore, Relations, StorageError
from ..tenant.deps import get_current_org_id, get_document_store, get_relations

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/activities", tags=["activities"])


@router.get("")
async def activity_list(
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
):
    return await activity_svc.list_activities(store, org_id)


@router.post("")
async def activity_create(
    body: ActivityCreate,
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
):
    if not body.title.strip():
        raise HTTPException(status_code=400, detail="Title is required")
    try:
        return await activity_svc.create_activity(
            store,
            org_id,
            title=body.title,
            format=body.format,
            platform=body.platform,
            banner_url=body.bannerUrl,
        )
    except StorageError as exc:
        log.error("Failed to create activity: %s", exc)
        raise HTTPException(status_code=500, detail="Internal Error") from exc


@router.get("/{activity_id}")
async def activity_detail(
    activity_id: str,
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
):
    activity = await activity_svc.get_activity(store, org_id, activity_id)
    if activity is None:
        raise HTTPException(status_code=404, detail="Activity not found")
    return activity


@router.patch("/{activity_id}")
async def activity_update(
    activity_id: str,
    body: ActivityUpdate,
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
):
    if not body.title.strip():
        raise HTTPException(status_code=400, detail="Title is required")
    try:
        activity = await activity_svc.update_activity(store, org_id, activity_id, body.model_dump())
    except StorageError as exc:
        log.error("Failed to update activity %s: %s", activity_id, exc)
        raise HTTPException(status_code=500, detail="Internal Error") from exc
    if activity is None:
        raise HTTPException(status_code=404, detail="Activity not found")
    return activity


@router.delete("/{activity_id}", status_code=204)
async def activity_delete(
    activity_id: str,
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
    relations: Relations = Depends(get_relations),
):
    if not await activity_svc.delete_activity(store, relations, org_id, activity_id):
        raise HTTPException(status_code=404, detail="Activity not found")
    return Response(status_code=204)


@router.post("/{activity_id}/rag-token", response_model=RagTokenResponse)
async def activity_rag_token(
    activity_id: str,
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
):
    if await activity_svc.get_activity(store, org_id, activity_id) is None:
        raise HTTPException(status_code=404, detail="Activity not found")
    try:
        token = token_svc.issue_rag_token(activity_id)
    except token_svc.TokenNotConfigured as exc:
        log.error("Cannot issue RAG token: %s", exc)
        raise HTTPException(status_code=500, detail="Internal Error") from exc
    return RagTokenResponse(token=token, activityId=activity_id)
