"""RAG document routes: upload, list, signed access and activity links."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile

from ..assets.objectstore import ObjectStore, ObjectStoreNotConfigured
from ..config import settings
from ..schemas.documents import LinkRequest, SignedUrlResponse
from ..services import activity_svc, document_svc, token_svc
from ..store import DocumentStore, Relations, StorageError
from ..tenant.deps import get_current_org_id, get_document_store, get_objects, get_relations

log = logging.getLogger(__name__)

router = APIRouter(tags=["documents"])


@router.get("/api/documents")
async def document_list(
    activityId: str | None = None,
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
    relations: Relations = Depends(get_relations),
):
    return await document_svc.list_documents(store, relations, org_id, activityId)


@router.post("/api/documents")
async def document_upload(
    file: UploadFile = File(...),
    activityId: str | None = Form(None),
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
    relations: Relations = Depends(get_relations),
    objects: ObjectStore = Depends(get_objects),
):
    content = await file.read()
    try:
        return await document_svc.upload_document(
            store,
            relations,
            objects,
            org_id=org_id,
            filename=file.filename,
            content=content,
            mime_type=file.content_type,
            activity_id=activityId,
        )
    except (ObjectStoreNotConfigured, StorageError) as exc:
        log.error("Upload of %s failed: %s", file.filename, exc)
        raise HTTPException(status_code=500, detail="Internal Error") from exc


@router.delete("/api/documents/{document_id}")
async def document_delete(
    document_id: str,
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
    relations: Relations = Depends(get_relations),
    objects: ObjectStore = Depends(get_objects),
):
    deleted = await document_svc.delete_document(store, relations, objects, org_id, document_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Document not found")
    return {"message": "ok"}


@router.get("/api/documents/{document_id}/access", response_model=SignedUrlResponse)
async def document_access(
    document_id: str,
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
    objects: ObjectStore = Depends(get_objects),
):
    document = await document_svc.get_document(store, org_id, document_id)
    if not document or not document.get("url"):
        raise HTTPException(status_code=404, detail="Document not found")
    ttl = settings.signed_url_ttl_seconds
    try:
        url = await objects.signed_url(document["url"], ttl)
    except ObjectStoreNotConfigured as exc:
        log.error("Cannot sign URL for document %s: %s", document_id, exc)
        raise HTTPException(status_code=500, detail="Internal Error") from exc
    return SignedUrlResponse(url=url, expiresIn=ttl)


@router.post("/api/documents/{document_id}/link")
async def document_link(
    document_id: str,
    body: LinkRequest,
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
    relations: Relations = Depends(get_relations),
):
    await _require_pair(store, org_id, document_id, body.activityId)
    if not await relations.link_document_to_activity(document_id, body.activityId):
        raise HTTPException(status_code=500, detail="Internal Error")
    return {"message": "ok"}


@router.post("/api/documents/{document_id}/unlink")
async def document_unlink(
    document_id: str,
    body: LinkRequest,
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
    relations: Relations = Depends(get_relations),
):
    await _require_pair(store, org_id, document_id, body.activityId)
    await relations.unlink_document_from_activity(document_id, body.activityId)
    return {"message": "ok"}


@router.get("/api/llm/documents")
async def llm_documents(
    request: Request,
    store: DocumentStore = Depends(get_document_store),
    relations: Relations = Depends(get_relations),
    objects: ObjectStore = Depends(get_objects),
):
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid token")
    payload = token_svc.verify_rag_token(auth_header.split(" ", 1)[1].strip())
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid token")

    listing = await document_svc.documents_for_rag(store, relations, objects, payload["activityId"])
    if listing is None:
        raise HTTPException(status_code=404, detail="Activity not found or RAG not enabled")
    return listing


async def _require_pair(store: DocumentStore, org_id: str, document_id: str, activity_id: str) -> None:
    if await document_svc.get_document(store, org_id, document_id) is None:
        raise HTTPException(status_code=404, detail="Document not found")
    if await activity_svc.get_activity(store, org_id, activity_id) is None:
        raise HTTPException(status_code=404, detail="Activity not found")
