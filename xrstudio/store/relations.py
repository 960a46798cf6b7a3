"""Many-to-many links between activities and documents.

Embedded backend: rows in ``activity_documents`` plus the document's own
``activityIds`` array, which makes the join table rebuildable.
Document-database backend: ``documentIds`` on the activity and ``activityIds``
on the document, both maintained with set semantics.

Link metadata never takes the primary write down with it: failures here are
logged and reported as ``False`` / empty results. Only an unusable store
propagates.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from pymongo.errors import PyMongoError
from sqlalchemy import delete, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from .errors import StorageError, StoreUnavailableError
from .facade import DocumentStore
from .schema import ACTIVITIES, DOCUMENTS, activity_documents, now_ms

log = logging.getLogger(__name__)

DOCUMENT_IDS_FIELD = "documentIds"
ACTIVITY_IDS_FIELD = "activityIds"

_OWNER_COLUMNS = {
    "activity": ("activity_id", "activityId", "activity"),
    "document": ("document_id", "documentId", "doc_id", "document"),
}


class Relations:
    def __init__(self, store: DocumentStore):
        self.store = store

    @property
    def activities(self):
        return self.store.collection(ACTIVITIES)

    @property
    def documents(self):
        return self.store.collection(DOCUMENTS)

    # -- link / unlink -------------------------------------------------------

    async def link_document_to_activity(self, document_id: str, activity_id: str) -> bool:
        """Idempotently link; returns ``False`` (and logs) if an endpoint is missing."""
        if not self.store.is_embedded:
            return await self._link_document_db(document_id, activity_id)

        activity = await self.activities.find_one({"_id": activity_id})
        document = await self.documents.find_one({"_id": document_id})
        if activity is None or document is None:
            log.error(
                "Cannot link document %s to activity %s: activity found=%s, document found=%s",
                document_id, activity_id, activity is not None, document is not None,
            )
            return False

        stmt = (
            sqlite_insert(activity_documents)
            .values(activity_id=activity_id, document_id=document_id, created_at=now_ms())
            .on_conflict_do_nothing(index_elements=["activity_id", "document_id"])
        )
        if not await self._execute(stmt, "link", document_id, activity_id):
            return False
        await self._mirror_on_document(document_id, {"$addToSet": {ACTIVITY_IDS_FIELD: activity_id}})
        return True

    async def force_link_document_to_activity(self, document_id: str, activity_id: str) -> bool:
        """Link without existence checks, refreshing the link timestamp if present."""
        if not self.store.is_embedded:
            return await self._link_document_db(document_id, activity_id)

        stmt = sqlite_insert(activity_documents).values(
            activity_id=activity_id, document_id=document_id, created_at=now_ms()
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["activity_id", "document_id"],
            set_={"created_at": stmt.excluded.created_at},
        )
        linked = await self._execute(stmt, "force link", document_id, activity_id)
        await self._mirror_on_document(document_id, {"$addToSet": {ACTIVITY_IDS_FIELD: activity_id}})
        return linked

    async def unlink_document_from_activity(self, document_id: str, activity_id: str) -> None:
        if not self.store.is_embedded:
            await self._update_document_db(
                self.documents, document_id, {"$pull": {ACTIVITY_IDS_FIELD: activity_id}}
            )
            await self._update_document_db(
                self.activities, activity_id, {"$pull": {DOCUMENT_IDS_FIELD: document_id}}
            )
            return

        stmt = delete(activity_documents).where(
            activity_documents.c.activity_id == activity_id,
            activity_documents.c.document_id == document_id,
        )
        await self._execute(stmt, "unlink", document_id, activity_id)
        await self._mirror_on_document(document_id, {"$pull": {ACTIVITY_IDS_FIELD: activity_id}})

    # -- traversal -----------------------------------------------------------

    async def get_documents_by_activity_id(self, activity_id: str) -> list[str]:
        """Document ids linked to the activity, most recently linked first."""
        if not self.store.is_embedded:
            return await self._ids_from_document_db(self.activities, activity_id, DOCUMENT_IDS_FIELD)
        return await self._traverse(owner="activity", target="document", owner_id=activity_id)

    async def get_activities_by_document_id(self, document_id: str) -> list[str]:
        """Activity ids linked to the document, most recently linked first."""
        if not self.store.is_embedded:
            return await self._ids_from_document_db(self.documents, document_id, ACTIVITY_IDS_FIELD)
        return await self._traverse(owner="document", target="activity", owner_id=document_id)

    async def rebuild_activity_documents(self) -> int:
        """Re-create join rows from each document's ``activityIds``."""
        if not self.store.is_embedded:
            return 0

        ensured = 0
        async for document in self.documents.find():
            activity_ids = document.get(ACTIVITY_IDS_FIELD)
            if not isinstance(activity_ids, list):
                continue
            for activity_id in activity_ids:
                if await self.activities.find_one({"_id": activity_id}) is None:
                    log.warning(
                        "Skipping link of document %s to missing activity %s",
                        document["_id"], activity_id,
                    )
                    continue
                stmt = (
                    sqlite_insert(activity_documents)
                    .values(activity_id=activity_id, document_id=document["_id"], created_at=now_ms())
                    .on_conflict_do_nothing(index_elements=["activity_id", "document_id"])
                )
                if await self._execute(stmt, "rebuild", document["_id"], activity_id):
                    ensured += 1
        log.info("Rebuilt %d activity-document links", ensured)
        return ensured

    # -- embedded internals --------------------------------------------------

    async def _execute(self, stmt, action: str, document_id: str, activity_id: str) -> bool:
        engine = await self._engine()
        try:
            async with engine.begin() as conn:
                await conn.execute(stmt)
            return True
        except SQLAlchemyError:
            log.exception(
                "Failed to %s document %s and activity %s", action, document_id, activity_id
            )
            return False

    async def _mirror_on_document(self, document_id: str, update: dict[str, Any]) -> None:
        try:
            await self.documents.update_one({"_id": document_id}, update)
        except (StorageError, SQLAlchemyError):
            log.exception("Failed to update %s on document %s", ACTIVITY_IDS_FIELD, document_id)

    async def _traverse(self, *, owner: str, target: str, owner_id: str) -> list[str]:
        owner_col = f"{owner}_id"
        target_col = f"{target}_id"
        ordered = text(
            f"SELECT {target_col} FROM activity_documents WHERE {owner_col} = :owner_id "
            "ORDER BY created_at DESC, rowid DESC"
        )
        unordered = text(
            f"SELECT {target_col} FROM activity_documents WHERE {owner_col} = :owner_id"
        )
        engine = await self._engine()

        for label, stmt in (("ordered", ordered), ("unordered", unordered)):
            try:
                async with engine.connect() as conn:
                    rows = (await conn.execute(stmt, {"owner_id": owner_id})).all()
                if label != "ordered":
                    log.warning("Relations lookup for %s %s used the %s fallback", owner, owner_id, label)
                return _unique(row[0] for row in rows)
            except SQLAlchemyError:
                log.warning(
                    "Relations %s lookup failed for %s %s", label, owner, owner_id, exc_info=True
                )

        try:
            async with engine.connect() as conn:
                result = await conn.exec_driver_sql("SELECT * FROM activity_documents")
                rows = [dict(row._mapping) for row in result.all()]
        except SQLAlchemyError:
            log.exception("Relations row scan failed for %s %s", owner, owner_id)
            return []

        log.warning("Relations lookup for %s %s used the row-scan fallback", owner, owner_id)
        found = []
        for row in rows:
            if _first_value(row, _OWNER_COLUMNS[owner]) != owner_id:
                continue
            target_id = _first_value(row, _OWNER_COLUMNS[target])
            if isinstance(target_id, str) and target_id:
                found.append(target_id)
        return _unique(found)

    async def _engine(self):
        try:
            engine = self.store.engine
        except StorageError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        await self.store.ensure_initialized()
        return engine

    # -- document-database internals -----------------------------------------

    async def _link_document_db(self, document_id: str, activity_id: str) -> bool:
        doc_ok = await self._update_document_db(
            self.documents, document_id, {"$addToSet": {ACTIVITY_IDS_FIELD: activity_id}}
        )
        activity_ok = await self._update_document_db(
            self.activities, activity_id, {"$addToSet": {DOCUMENT_IDS_FIELD: document_id}}
        )
        return doc_ok and activity_ok

    async def _update_document_db(self, collection, doc_id: str, update: dict[str, Any]) -> bool:
        try:
            result = await collection.update_one({"_id": doc_id}, update)
        except (PyMongoError, StorageError):
            log.exception("Failed to update relation fields on %s", doc_id)
            return False
        if result.matched_count == 0:
            log.error("Relation update matched no document with _id %s", doc_id)
            return False
        return True

    async def _ids_from_document_db(self, collection, doc_id: str, field: str) -> list[str]:
        try:
            document = await collection.find_one({"_id": doc_id})
        except (PyMongoError, StorageError):
            log.exception("Failed to read relation field %s on %s", field, doc_id)
            return []
        if not document:
            return []
        values = document.get(field) or []
        if not isinstance(values, list):
            return []
        # Arrays grow by appending, so the newest link is last.
        return _unique(str(v) for v in reversed(values))


def _first_value(row: dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return None


def _unique(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered
