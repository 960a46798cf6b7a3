"""Document-database style collections over opaque JSON rows in SQLite.

``DocumentCollection`` implements the subset of the MongoDB collection API the
application relies on (``find_one``, ``find``, ``count_documents``,
``insert_one``, ``update_one``, ``delete_one``), so route code can be written
once and run against either backend.

Read failures are logged and surface as "nothing found"; write failures
propagate.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping

from sqlalchemy import (
    Table,
    and_,
    delete,
    exists,
    false,
    func,
    insert,
    literal_column,
    or_,
    select,
    true,
    update as sql_update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.sql.elements import ColumnElement

from .errors import (
    ConcurrentModificationError,
    DuplicateKeyError,
    SerializationError,
    StorageError,
)
from .query import (
    ID_ALIAS,
    ID_FIELD,
    Eq,
    FieldPath,
    Filter,
    In,
    Predicate,
    apply_update,
    normalize_value,
    parse_filter,
    parse_update,
)
from .schema import JSON_INDEXES, document_table, ensure_collection_table, now_ms

log = logging.getLogger(__name__)

ASCENDING = 1
DESCENDING = -1

_NUMERIC_TYPES = ("integer", "real")


def new_id() -> str:
    """Identifier for a new document, the same shape on both backends."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class InsertOneResult:
    inserted_id: str
    document: dict[str, Any]


@dataclass(frozen=True)
class UpdateResult:
    matched_count: int
    modified_count: int


@dataclass(frozen=True)
class DeleteResult:
    deleted_count: int


def dumps(document: Mapping[str, Any]) -> str:
    try:
        return json.dumps(document, default=_json_default, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"Document is not JSON serializable: {exc}") from exc


def _json_default(value: Any) -> Any:
    isoformat = getattr(value, "isoformat", None)
    if callable(isoformat):
        return isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class DocumentCollection:
    """One logical collection bound to its SQLite table."""

    def __init__(self, engine: AsyncEngine, name: str):
        self.name = name
        self.table: Table = document_table(name)
        self._engine = engine
        self._ready = False
        self._indexed_fields = {field for _, field in JSON_INDEXES.get(name, ())}

    def __repr__(self) -> str:
        return f"DocumentCollection({self.name!r})"

    async def ensure_ready(self) -> None:
        if not self._ready:
            await ensure_collection_table(self._engine, self.name)
            self._ready = True

    # -- reads ---------------------------------------------------------------

    async def find_one(self, query: Mapping[str, Any] | Filter | None = None) -> dict | None:
        row = await self._find_one_row(query)
        if row is None:
            return None
        try:
            return _load(row.data)
        except ValueError:
            log.exception("Unreadable document %s in %s", row.id, self.name)
            return None

    def find(self, query: Mapping[str, Any] | Filter | None = None) -> "Cursor":
        return Cursor(self, query)

    async def count_documents(self, query: Mapping[str, Any] | Filter | None = None) -> int:
        try:
            parsed = parse_filter(query)
            await self.ensure_ready()
            stmt = select(func.count()).select_from(self.table).where(self._where(parsed))
            async with self._engine.connect() as conn:
                return (await conn.execute(stmt)).scalar_one()
        except (StorageError, SQLAlchemyError):
            log.exception("count_documents failed on %s", self.name)
            return 0

    # -- writes --------------------------------------------------------------

    async def insert_one(self, document: Mapping[str, Any]) -> InsertOneResult:
        """Insert a copy of ``document``; the caller's mapping is left untouched."""
        doc = dict(document)
        doc_id = doc.get(ID_FIELD)
        if doc_id in (None, ""):
            doc_id = doc.get(ID_ALIAS)
        doc_id = str(doc_id) if doc_id not in (None, "") else new_id()
        doc[ID_FIELD] = doc_id
        payload = dumps(doc)

        await self.ensure_ready()
        now = now_ms()
        stmt = insert(self.table).values(id=doc_id, data=payload, created_at=now, updated_at=now)
        try:
            async with self._engine.begin() as conn:
                await conn.execute(stmt)
        except IntegrityError as exc:
            raise DuplicateKeyError(self.name, doc_id) from exc
        return InsertOneResult(inserted_id=doc_id, document=doc)

    async def update_one(
        self,
        query: Mapping[str, Any] | Filter,
        update: Mapping[str, Any],
    ) -> UpdateResult:
        """Apply ``$set``, ``$addToSet`` and ``$pull`` (in that order) to one document.

        The row is rewritten only when an operator changed something. The
        write is conditional on the ``updated_at`` value that was read, so a
        concurrent writer causes ``ConcurrentModificationError`` instead of a
        silently lost update.
        """
        parsed_update = parse_update(update)
        row = await self._find_one_row(query)
        if row is None:
            return UpdateResult(matched_count=0, modified_count=0)

        current = _load(row.data)
        new_doc, changed = apply_update(current, parsed_update)
        if not changed:
            return UpdateResult(matched_count=1, modified_count=0)

        new_doc[ID_FIELD] = row.id
        payload = dumps(new_doc)
        stmt = (
            sql_update(self.table)
            .where(self.table.c.id == row.id, self.table.c.updated_at == row.updated_at)
            .values(data=payload, updated_at=max(now_ms(), row.updated_at + 1))
        )
        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
        if result.rowcount == 0:
            raise ConcurrentModificationError(self.name, row.id)
        return UpdateResult(matched_count=1, modified_count=1)

    async def delete_one(self, query: Mapping[str, Any] | Filter) -> DeleteResult:
        row = await self._find_one_row(query)
        if row is None:
            return DeleteResult(deleted_count=0)
        async with self._engine.begin() as conn:
            result = await conn.execute(delete(self.table).where(self.table.c.id == row.id))
        return DeleteResult(deleted_count=result.rowcount)

    # -- internals -----------------------------------------------------------

    async def _find_one_row(self, query):
        try:
            parsed = parse_filter(query)
            await self.ensure_ready()
            stmt = self._select(parsed).limit(1)
            async with self._engine.connect() as conn:
                return (await conn.execute(stmt)).first()
        except (StorageError, SQLAlchemyError):
            log.exception("find_one failed on %s for %r", self.name, query)
            return None

    def _select(self, parsed: Filter):
        t = self.table
        stmt = select(t.c.id, t.c.data, t.c.created_at, t.c.updated_at)
        ids = parsed.id_lookup()
        if ids is not None:
            # Primary-key fast path.
            return stmt.where(t.c.id.in_([str(i) for i in ids if i is not None]))
        return stmt.where(self._where(parsed))

    def _where(self, parsed: Filter) -> ColumnElement[bool]:
        return and_(true(), *(self._predicate(p) for p in parsed.predicates))

    def _predicate(self, predicate: Predicate) -> ColumnElement[bool]:
        if isinstance(predicate, Eq):
            return self._equals(predicate.field, predicate.value)
        if isinstance(predicate, In):
            if not predicate.values:
                return false()
            return or_(*(self._equals(predicate.field, v) for v in predicate.values))
        raise StorageError(f"Unknown predicate: {predicate!r}")

    def _equals(self, path: FieldPath, value: Any) -> ColumnElement[bool]:
        data = self.table.c.data
        if path.is_id and value is not None:
            return self.table.c.id == str(value)

        json_path = path.json_path
        json_type = func.json_type(data, json_path)
        if value is None:
            return or_(json_type.is_(None), json_type == "null")

        if self._uses_index(path, value):
            # Indexed fields hold scalars; match the index expression exactly.
            indexed = literal_column(f"'$.{path.segments[0]}'")
            return func.json_extract(data, indexed) == normalize_value(value)

        elements = func.json_each(data, json_path).table_valued("value", "type")
        if isinstance(value, bool):
            type_name = "true" if value else "false"
            scalar = json_type == type_name
            member = elements.c.type == type_name
        elif isinstance(value, (int, float)):
            scalar = and_(func.json_extract(data, json_path) == value, json_type.in_(_NUMERIC_TYPES))
            member = and_(elements.c.value == value, elements.c.type.in_(_NUMERIC_TYPES))
        else:
            bound = normalize_value(value)
            scalar = func.json_extract(data, json_path) == bound
            member = elements.c.value == bound

        contains = exists(select(literal_column("1")).select_from(elements).where(member))
        # Scalar equality, or membership when the stored value is an array.
        return or_(scalar, and_(json_type == "array", contains))

    def _uses_index(self, path: FieldPath, value: Any) -> bool:
        return (
            len(path.segments) == 1
            and path.segments[0] in self._indexed_fields
            and not isinstance(value, (bool, int, float))
        )

    def _order_by(self, sort: list[tuple[FieldPath, int]]):
        t = self.table
        clauses = []
        for path, direction in sort:
            expr = t.c.id if path.is_id else func.json_extract(t.c.data, path.json_path)
            clauses.append(expr.desc() if direction == DESCENDING else expr.asc())
        clauses.extend([t.c.created_at.asc(), literal_column("rowid").asc()])
        return clauses

    async def _fallback_rows(self, parsed: Filter) -> list[dict]:
        """Substring scan used when the JSON-path query cannot execute."""
        t = self.table
        stmt = select(t.c.data)
        for predicate in parsed.predicates:
            if isinstance(predicate, Eq) and len(predicate.field.segments) == 1:
                fragment = json.dumps({predicate.field.segments[0]: predicate.value})[1:-1]
                escaped = fragment.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
                stmt = stmt.where(t.c.data.like(f"%{escaped}%", escape="\\"))
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()

        documents = []
        for (data,) in rows:
            try:
                document = _load(data)
            except ValueError:
                log.warning("Skipping unreadable row in %s", self.name)
                continue
            if parsed.matches(document):
                documents.append(document)
        return documents


class Cursor:
    """Lazy, restartable result set returned by ``DocumentCollection.find``.

    Nothing is read until the cursor is iterated or materialized, and every
    iteration re-runs the query.
    """

    def __init__(self, collection: DocumentCollection, query):
        self._collection = collection
        self._query = query
        self._sort: list[tuple[FieldPath, int]] = []
        self._limit: int | None = None

    def sort(self, key: str | list[tuple[str, int]], direction: int = ASCENDING) -> "Cursor":
        keys = key if isinstance(key, list) else [(key, direction)]
        for name, order in keys:
            self._sort.append((FieldPath.parse(name), order))
        return self

    def limit(self, count: int) -> "Cursor":
        self._limit = count if count > 0 else None
        return self

    async def to_list(self, length: int | None = None) -> list[dict]:
        limit = self._limit
        if length is not None and length > 0:
            limit = length if limit is None else min(limit, length)
        return await self._fetch(limit)

    async def first(self) -> dict | None:
        documents = await self.to_list(1)
        return documents[0] if documents else None

    async def __aiter__(self) -> AsyncIterator[dict]:
        for document in await self._fetch(self._limit):
            yield document

    async def _fetch(self, limit: int | None) -> list[dict]:
        collection = self._collection
        try:
            parsed = parse_filter(self._query)
        except StorageError:
            log.exception("Unsupported find filter on %s: %r", collection.name, self._query)
            return []

        try:
            await collection.ensure_ready()
            stmt = collection._select(parsed).order_by(*collection._order_by(self._sort))
            if limit is not None:
                stmt = stmt.limit(limit)
            async with collection._engine.connect() as conn:
                rows = (await conn.execute(stmt)).all()
            return [_load(row.data) for row in rows]
        except (SQLAlchemyError, ValueError):
            log.warning(
                "JSON query failed on %s, falling back to substring scan",
                collection.name, exc_info=True,
            )

        try:
            documents = await collection._fallback_rows(parsed)
        except SQLAlchemyError:
            log.exception("Substring scan failed on %s", collection.name)
            return []
        for path, direction in reversed(self._sort):
            documents.sort(key=_sort_key(path), reverse=direction == DESCENDING)
        return documents[:limit] if limit is not None else documents


def _load(data: str) -> dict:
    return json.loads(data)


def _sort_key(path: FieldPath):
    def key(document: dict) -> tuple[bool, str]:
        present, value = path.lookup(document)
        return present, str(value)

    return key
