"""Tests for the SQLite-backed document collection."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select, text
from sqlalchemy.dialects import sqlite

from xrstudio.store import (
    DESCENDING,
    ConcurrentModificationError,
    DocumentStore,
    DuplicateKeyError,
    SerializationError,
    UnsupportedQueryError,
)
from xrstudio.store.query import parse_filter


@pytest.mark.asyncio
async def test_insert_generates_id_and_leaves_input_untouched(store: DocumentStore):
    scenes = store.collection("scenes")
    payload = {"name": "Lobby", "orgId": "o1"}

    result = await scenes.insert_one(payload)

    assert "_id" not in payload
    assert isinstance(result.inserted_id, str) and result.inserted_id
    assert result.document == {**payload, "_id": result.inserted_id}
    assert await scenes.find_one({"_id": result.inserted_id}) == result.document


@pytest.mark.asyncio
async def test_insert_duplicate_id_raises(store: DocumentStore):
    scenes = store.collection("scenes")
    await scenes.insert_one({"_id": "s1"})
    with pytest.raises(DuplicateKeyError):
        await scenes.insert_one({"_id": "s1", "name": "again"})


@pytest.mark.asyncio
async def test_insert_unserializable_document_raises(store: DocumentStore):
    with pytest.raises(SerializationError):
        await store.collection("scenes").insert_one({"blob": object()})


@pytest.mark.asyncio
async def test_find_one_by_field_and_missing(store: DocumentStore):
    assets = store.collection("assets")
    await assets.insert_one({"_id": "a1", "kind": "model", "orgId": "o1"})
    await assets.insert_one({"_id": "a2", "kind": "texture", "orgId": "o1"})

    found = await assets.find_one({"kind": "texture", "orgId": "o1"})
    assert found["_id"] == "a2"
    assert await assets.find_one({"kind": "audio"}) is None
    assert await assets.find_one({"_id": "nope"}) is None


@pytest.mark.asyncio
async def test_equality_matches_array_members_and_booleans(store: DocumentStore):
    docs = store.collection("documents")
    await docs.insert_one({"_id": "d1", "activityIds": ["A1", "A2"], "ragEnabled": True})
    await docs.insert_one({"_id": "d2", "activityIds": ["A3"], "ragEnabled": False})

    assert (await docs.find_one({"activityIds": "A2"}))["_id"] == "d1"
    assert (await docs.find_one({"ragEnabled": False}))["_id"] == "d2"
    assert await docs.count_documents({"activityIds": "A9"}) == 0


@pytest.mark.asyncio
async def test_null_filter_matches_missing_field(store: DocumentStore):
    docs = store.collection("documents")
    await docs.insert_one({"_id": "d1", "deletedAt": None})
    await docs.insert_one({"_id": "d2"})
    await docs.insert_one({"_id": "d3", "deletedAt": "2024-01-01"})

    ids = sorted(d["_id"] for d in await docs.find({"deletedAt": None}).to_list())
    assert ids == ["d1", "d2"]


@pytest.mark.asyncio
async def test_filter_values_are_bound_not_interpolated(store: DocumentStore):
    docs = store.collection("documents")
    await docs.insert_one({"_id": "d1", "filename": "x"})
    assert await docs.find_one({"filename": "x' OR '1'='1"}) is None
    assert await docs.count_documents() == 1


@pytest.mark.asyncio
async def test_find_in_sort_and_limit(store: DocumentStore):
    docs = store.collection("documents")
    for i, created in enumerate(["2024-01-01", "2024-03-01", "2024-02-01"]):
        await docs.insert_one({"_id": f"d{i}", "orgId": "o1", "createdAt": created})
    await docs.insert_one({"_id": "other", "orgId": "o2", "createdAt": "2024-04-01"})

    newest = await docs.find({"orgId": "o1"}).sort("createdAt", DESCENDING).to_list()
    assert [d["_id"] for d in newest] == ["d1", "d2", "d0"]

    limited = await docs.find({"orgId": "o1"}).sort("createdAt", DESCENDING).limit(2).to_list()
    assert [d["_id"] for d in limited] == ["d1", "d2"]

    picked = await docs.find({"_id": {"$in": ["d0", "other", "ghost"]}}).to_list()
    assert sorted(d["_id"] for d in picked) == ["d0", "other"]
    assert await docs.find({"_id": {"$in": []}}).to_list() == []


@pytest.mark.asyncio
async def test_cursor_is_lazy_and_restartable(store: DocumentStore):
    docs = store.collection("documents")
    cursor = docs.find({"orgId": "o1"})
    await docs.insert_one({"_id": "d1", "orgId": "o1"})

    first = [d["_id"] async for d in cursor]
    await docs.insert_one({"_id": "d2", "orgId": "o1"})
    second = [d["_id"] async for d in cursor]

    assert first == ["d1"]
    assert second == ["d1", "d2"]
    assert (await cursor.first())["_id"] == "d1"


@pytest.mark.asyncio
async def test_find_with_unsupported_filter_returns_empty(store: DocumentStore):
    docs = store.collection("documents")
    await docs.insert_one({"_id": "d1", "size": 5})
    assert await docs.find({"size": {"$gt": 1}}).to_list() == []
    assert await docs.find_one({"$where": "1"}) is None


@pytest.mark.asyncio
async def test_update_one_set_add_pull(store: DocumentStore):
    docs = store.collection("documents")
    await docs.insert_one({"_id": "d1", "activityIds": ["A1"], "name": "old"})

    result = await docs.update_one(
        {"_id": "d1"},
        {"$set": {"name": "new"}, "$addToSet": {"activityIds": "A2"}, "$pull": {"activityIds": "A1"}},
    )

    assert (result.matched_count, result.modified_count) == (1, 1)
    assert await docs.find_one({"_id": "d1"}) == {"_id": "d1", "activityIds": ["A2"], "name": "new"}


@pytest.mark.asyncio
async def test_update_one_unchanged_and_unmatched(store: DocumentStore, engine):
    docs = store.collection("documents")
    await docs.insert_one({"_id": "d1", "activityIds": ["A1"]})
    async with engine.connect() as conn:
        before = (await conn.execute(text("SELECT updated_at FROM documents WHERE id = 'd1'"))).scalar_one()

    result = await docs.update_one({"_id": "d1"}, {"$addToSet": {"activityIds": "A1"}})
    assert (result.matched_count, result.modified_count) == (1, 0)
    async with engine.connect() as conn:
        after = (await conn.execute(text("SELECT updated_at FROM documents WHERE id = 'd1'"))).scalar_one()
    assert after == before

    missing = await docs.update_one({"_id": "ghost"}, {"$set": {"x": 1}})
    assert (missing.matched_count, missing.modified_count) == (0, 0)


@pytest.mark.asyncio
async def test_update_one_bumps_updated_at(store: DocumentStore, engine):
    docs = store.collection("documents")
    await docs.insert_one({"_id": "d1"})
    async with engine.begin() as conn:
        await conn.execute(text("UPDATE documents SET updated_at = 9999999999999 WHERE id = 'd1'"))

    await docs.update_one({"_id": "d1"}, {"$set": {"name": "n"}})

    async with engine.connect() as conn:
        stamp = (await conn.execute(text("SELECT updated_at FROM documents WHERE id = 'd1'"))).scalar_one()
    assert stamp == 10000000000000


@pytest.mark.asyncio
async def test_update_one_rejects_unsupported_operator(store: DocumentStore):
    docs = store.collection("documents")
    await docs.insert_one({"_id": "d1", "n": 1})
    with pytest.raises(UnsupportedQueryError):
        await docs.update_one({"_id": "d1"}, {"$inc": {"n": 1}})


@pytest.mark.asyncio
async def test_concurrent_writer_is_detected(store: DocumentStore, engine, monkeypatch):
    docs = store.collection("documents")
    await docs.insert_one({"_id": "d1", "activityIds": []})

    original = docs._find_one_row

    async def read_then_interleave(query):
        row = await original(query)
        async with engine.begin() as conn:
            await conn.execute(
                text("UPDATE documents SET updated_at = updated_at + 5 WHERE id = 'd1'")
            )
        return row

    monkeypatch.setattr(docs, "_find_one_row", read_then_interleave)
    with pytest.raises(ConcurrentModificationError):
        await docs.update_one({"_id": "d1"}, {"$addToSet": {"activityIds": "A1"}})


@pytest.mark.asyncio
async def test_parallel_add_to_set_loses_nothing(store: DocumentStore):
    docs = store.collection("documents")
    await docs.insert_one({"_id": "d1", "activityIds": []})

    async def add(value: str):
        while True:
            try:
                return await docs.update_one({"_id": "d1"}, {"$addToSet": {"activityIds": value}})
            except ConcurrentModificationError:
                await asyncio.sleep(0)

    await asyncio.gather(*(add(f"A{i}") for i in range(5)))
    doc = await docs.find_one({"_id": "d1"})
    assert sorted(doc["activityIds"]) == [f"A{i}" for i in range(5)]


@pytest.mark.asyncio
async def test_delete_one(store: DocumentStore):
    docs = store.collection("documents")
    await docs.insert_one({"_id": "d1", "orgId": "o1"})
    await docs.insert_one({"_id": "d2", "orgId": "o1"})

    assert (await docs.delete_one({"orgId": "o1"})).deleted_count == 1
    assert await docs.count_documents({"orgId": "o1"}) == 1
    assert (await docs.delete_one({"_id": "ghost"})).deleted_count == 0


@pytest.mark.asyncio
async def test_unknown_collection_is_created_on_first_use(store: DocumentStore, engine):
    await store.collection("quiz_results").insert_one({"_id": "q1", "score": 3})
    async with engine.connect() as conn:
        tables = {
            row[0]
            for row in await conn.execute(text("SELECT name FROM sqlite_master WHERE type = 'table'"))
        }
    assert "quiz_results" in tables


@pytest.mark.asyncio
async def test_id_alias_uses_the_identifier(store: DocumentStore):
    docs = store.collection("documents")
    inserted = await docs.insert_one({"title": "x"})
    await docs.insert_one({"id": "given", "title": "y"})

    assert (await docs.find_one({"id": inserted.inserted_id}))["title"] == "x"
    assert (await docs.find_one({"_id": "given"}))["title"] == "y"
    picked = await docs.find({"id": {"$in": [inserted.inserted_id, "given"]}}).to_list()
    assert sorted(d["title"] for d in picked) == ["x", "y"]


@pytest.mark.asyncio
async def test_booleans_and_numbers_do_not_match_each_other(store: DocumentStore):
    docs = store.collection("documents")
    await docs.insert_one({"_id": "bool", "flag": True})
    await docs.insert_one({"_id": "int", "flag": 1})
    await docs.insert_one({"_id": "bools", "flag": [True]})
    await docs.insert_one({"_id": "ints", "flag": [1]})

    assert sorted(d["_id"] for d in await docs.find({"flag": True}).to_list()) == ["bool", "bools"]
    assert sorted(d["_id"] for d in await docs.find({"flag": 1}).to_list()) == ["int", "ints"]
    assert await docs.count_documents({"flag": 1.0}) == 2


@pytest.mark.asyncio
async def test_indexed_field_filter_uses_json_index(store: DocumentStore, engine):
    scenes = store.collection("scenes")
    await scenes.insert_one({"_id": "s1", "orgId": "o1"})
    await scenes.insert_one({"_id": "s2", "orgId": "o2"})
    assert [d["_id"] for d in await scenes.find({"orgId": "o1"}).to_list()] == ["s1"]

    stmt = select(scenes.table.c.id).where(scenes._where(parse_filter({"orgId": "o1"})))
    compiled = stmt.compile(dialect=sqlite.dialect(), compile_kwargs={"literal_binds": True})
    async with engine.connect() as conn:
        plan = (await conn.exec_driver_sql(f"EXPLAIN QUERY PLAN {compiled}")).fetchall()
    assert any("idx_scenes_org" in row[-1] for row in plan)
