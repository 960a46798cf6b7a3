"""Document service - RAG documents stored in object storage, indexed in the store."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from ..assets.objectstore import ObjectStore
from ..config import settings
from ..store import DESCENDING, DocumentStore, Relations, new_id
from ..store.schema import ACTIVITIES, DOCUMENTS, now_ms
from .activity_svc import get_activity

log = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_FILENAME = "unnamed-file"


def safe_filename(filename: str | None) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", filename or DEFAULT_FILENAME)


async def get_document(store: DocumentStore, org_id: str, document_id: str) -> dict | None:
    return await store.collection(DOCUMENTS).find_one({"_id": document_id, "orgId": org_id})


async def upload_document(
    store: DocumentStore,
    relations: Relations,
    objects: ObjectStore,
    *,
    org_id: str,
    filename: str | None,
    content: bytes,
    mime_type: str | None = None,
    activity_id: str | None = None,
) -> dict:
    """Upload bytes, record their metadata and optionally link them to an activity.

    A failed link is logged and leaves the uploaded document in place.
    """
    original_name = filename or DEFAULT_FILENAME
    mime_type = mime_type or DEFAULT_MIME_TYPE
    key = await objects.upload(content, f"{now_ms()}-{safe_filename(original_name)}", mime_type)

    timestamp = datetime.now(timezone.utc).isoformat()
    record = {
        "_id": new_id(),
        "filename": original_name,
        "originalName": original_name,
        "mimeType": mime_type,
        "size": len(content),
        "url": key,
        "orgId": org_id,
        "activityIds": [],
        "metadata": {},
        "createdAt": timestamp,
        "updatedAt": timestamp,
    }
    result = await store.collection(DOCUMENTS).insert_one(record)
    document = {**record, "_id": result.inserted_id}

    if activity_id:
        if await get_activity(store, org_id, activity_id) is None:
            log.warning(
                "Uploaded document %s but activity %s is not in org %s; not linking",
                result.inserted_id, activity_id, org_id,
            )
        elif await relations.link_document_to_activity(result.inserted_id, activity_id):
            document["activityIds"] = [activity_id]
    return document


async def list_documents(
    store: DocumentStore,
    relations: Relations,
    org_id: str,
    activity_id: str | None = None,
) -> list[dict]:
    documents = store.collection(DOCUMENTS)
    if activity_id is None:
        return await documents.find({"orgId": org_id}).sort("createdAt", DESCENDING).to_list(None)

    ids = await relations.get_documents_by_activity_id(activity_id)
    if not ids:
        return []
    found = await documents.find({"_id": {"$in": ids}, "orgId": org_id}).to_list(None)
    by_id = {doc["_id"]: doc for doc in found}
    return [by_id[doc_id] for doc_id in ids if doc_id in by_id]


async def delete_document(
    store: DocumentStore,
    relations: Relations,
    objects: ObjectStore,
    org_id: str,
    document_id: str,
) -> bool:
    document = await get_document(store, org_id, document_id)
    if not document:
        return False

    for activity_id in await relations.get_activities_by_document_id(document_id):
        await relations.unlink_document_from_activity(document_id, activity_id)

    result = await store.collection(DOCUMENTS).delete_one({"_id": document_id})
    if document.get("url"):
        await objects.delete(document["url"])
    return result.deleted_count > 0


async def documents_for_rag(
    store: DocumentStore,
    relations: Relations,
    objects: ObjectStore,
    activity_id: str,
) -> list[dict] | None:
    """Signed-URL listing for an LLM consumer; None when RAG is not enabled."""
    activity = await store.collection(ACTIVITIES).find_one({"_id": activity_id, "ragEnabled": True})
    if not activity:
        return None

    ids = await relations.get_documents_by_activity_id(activity_id)
    if not ids:
        return []
    found = await store.collection(DOCUMENTS).find({"_id": {"$in": ids}}).to_list(None)
    by_id = {doc["_id"]: doc for doc in found}

    listing = []
    for doc_id in ids:
        doc = by_id.get(doc_id)
        if not doc or not doc.get("url"):
            continue
        listing.append({
            "id": doc["_id"],
            "name": doc.get("filename"),
            "url": await objects.signed_url(doc["url"], settings.rag_signed_url_ttl_seconds),
            "metadata": doc.get("metadata") or {},
        })
    return listing
