"""Activity service - org-scoped CRUD over the activities collection."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from ..store import DESCENDING, DocumentStore, Relations, new_id
from ..store.schema import ACTIVITIES

log = logging.getLogger(__name__)


async def get_activity(store: DocumentStore, org_id: str, activity_id: str) -> dict | None:
    return await store.collection(ACTIVITIES).find_one({"_id": activity_id, "orgId": org_id})


async def list_activities(store: DocumentStore, org_id: str) -> list[dict]:
    return await (
        store.collection(ACTIVITIES).find({"orgId": org_id}).sort("createdAt", DESCENDING).to_list(None)
    )


async def create_activity(
    store: DocumentStore,
    org_id: str,
    *,
    title: str,
    format: str,
    platform: str,
    banner_url: str | None = None,
) -> dict:
    timestamp = datetime.now(timezone.utc).isoformat()
    record = {
        "_id": new_id(),
        "title": title,
        "bannerUrl": banner_url or "",
        "platform": platform,
        "format": format,
        "orgId": org_id,
        "ragEnabled": False,
        "documentIds": [],
        "createdAt": timestamp,
        "updatedAt": timestamp,
    }
    result = await store.collection(ACTIVITIES).insert_one(record)
    return {**record, "_id": result.inserted_id}


async def update_activity(
    store: DocumentStore,
    org_id: str,
    activity_id: str,
    changes: dict,
) -> dict | None:
    """Apply ``changes`` with ``$set``. Returns the updated activity, or None if absent."""
    if await get_activity(store, org_id, activity_id) is None:
        return None
    fields = {key: value for key, value in changes.items() if value is not None}
    fields["updatedAt"] = datetime.now(timezone.utc).isoformat()
    await store.collection(ACTIVITIES).update_one(
        {"_id": activity_id, "orgId": org_id}, {"$set": fields}
    )
    return await get_activity(store, org_id, activity_id)


async def delete_activity(
    store: DocumentStore,
    relations: Relations,
    org_id: str,
    activity_id: str,
) -> bool:
    """Unlink every document, then delete the activity."""
    if await get_activity(store, org_id, activity_id) is None:
        return False

    document_ids = await relations.get_documents_by_activity_id(activity_id)
    for document_id in document_ids:
        await relations.unlink_document_from_activity(document_id, activity_id)

    result = await store.collection(ACTIVITIES).delete_one({"_id": activity_id, "orgId": org_id})
    log.info("Deleted activity %s (%d documents unlinked)", activity_id, len(document_ids))
    return result.deleted_count > 0
