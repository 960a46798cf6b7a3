"""Store diagnostics for an activity: backend mode, links and raw tables."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..store import DocumentStore, Relations
from ..store.schema import ACTIVITIES, DOCUMENTS, describe_tables


async def diagnose_activity(
    store: DocumentStore,
    relations: Relations,
    activity_id: str,
) -> dict[str, Any]:
    info: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "activityId": activity_id,
        "dbMode": store.mode.value,
    }

    activity = await store.collection(ACTIVITIES).find_one({"_id": activity_id})
    info["activity"] = (
        {
            "_id": activity["_id"],
            "name": activity.get("name"),
            "ragEnabled": activity.get("ragEnabled"),
        }
        if activity
        else None
    )

    document_ids = await relations.get_documents_by_activity_id(activity_id)
    info["documentIds"] = document_ids

    documents = []
    collection = store.collection(DOCUMENTS)
    for doc_id in document_ids:
        doc = await collection.find_one({"_id": doc_id})
        if doc:
            documents.append({"_id": doc["_id"], "filename": doc.get("filename"), "url": doc.get("url")})
        else:
            documents.append({"_id": doc_id, "error": "Document not found"})
    info["documents"] = documents

    if store.is_embedded:
        info["sqlite"] = {"tables": await describe_tables(store.engine)}
    return info
