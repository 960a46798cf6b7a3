"""Physical schema of the embedded store.

Every logical collection is a table of opaque JSON rows::

    id TEXT PRIMARY KEY, data TEXT NOT NULL,
    created_at INTEGER NOT NULL, updated_at INTEGER NOT NULL

plus one explicit join table, ``activity_documents``, for the many-to-many
link between activities and documents. Timestamps are epoch milliseconds.

Bootstrap is best-effort: each DDL step is attempted on its own and failures
are logged so a partially migrated file still serves the tables that work.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    Table,
    Text,
    text,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

log = logging.getLogger(__name__)

metadata = MetaData()

ACTIVITIES = "activities"
DOCUMENTS = "documents"
ACTIVITY_DOCUMENTS = "activity_documents"

# Collections the application always uses; created up front at bootstrap.
BASE_COLLECTIONS = (
    ACTIVITIES,
    DOCUMENTS,
    "assets",
    "scenes",
    "scenes_configuration",
    "pairing_codes",
)

# JSON-path secondary indexes per collection (no constraints).
JSON_INDEXES: dict[str, tuple[tuple[str, str], ...]] = {
    "scenes": (("idx_scenes_activity", "activity_id"), ("idx_scenes_org", "orgId")),
    "scenes_configuration": (("idx_scene_config", "scene_id"),),
    "pairing_codes": (("idx_pairing_codes_code", "code"),),
}

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

_NOW_MS_SQL = "(CAST(strftime('%s', 'now') AS INTEGER) * 1000)"

# Columns that may be missing on files written by older schema versions,
# with the expression used to backfill existing rows.
_DOCUMENT_COLUMNS = {
    "created_at": _NOW_MS_SQL,
    "updated_at": _NOW_MS_SQL,
}
_JOIN_COLUMNS = {
    "created_at": _NOW_MS_SQL,
}


def now_ms() -> int:
    return int(time.time() * 1000)


def validate_table_name(name: str) -> str:
    if not isinstance(name, str) or not _TABLE_NAME_RE.match(name):
        raise ValueError(f"Invalid collection name: {name!r}")
    if name.lower().startswith("sqlite_") or name == ACTIVITY_DOCUMENTS:
        raise ValueError(f"Reserved collection name: {name!r}")
    return name


def document_table(name: str) -> Table:
    """Return the Core table for a logical collection, defining it on first use."""
    validate_table_name(name)
    existing = metadata.tables.get(name)
    if existing is not None:
        return existing
    return Table(
        name,
        metadata,
        Column("id", Text, primary_key=True),
        Column("data", Text, nullable=False),
        Column("created_at", Integer, nullable=False),
        Column("updated_at", Integer, nullable=False),
        Index(f"idx_{name}_updated", "updated_at"),
    )


for _name in (ACTIVITIES, DOCUMENTS):
    document_table(_name)

activity_documents = Table(
    ACTIVITY_DOCUMENTS,
    metadata,
    Column(
        "activity_id",
        Text,
        ForeignKey(f"{ACTIVITIES}.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "document_id",
        Text,
        ForeignKey(f"{DOCUMENTS}.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("created_at", Integer, nullable=False, server_default=text(_NOW_MS_SQL)),
    PrimaryKeyConstraint("activity_id", "document_id"),
    Index("idx_activity_documents_activity", "activity_id"),
    Index("idx_activity_documents_document", "document_id"),
    Index("idx_activity_documents_created", "created_at"),
)


async def init_schema(engine: AsyncEngine) -> None:
    """Create base tables and migrate older files in place."""
    for name in BASE_COLLECTIONS:
        await ensure_collection_table(engine, name)
    await _guarded(engine, f"create table {ACTIVITY_DOCUMENTS}", _create_join_table)
    await _guarded(
        engine, f"migrate table {ACTIVITY_DOCUMENTS}",
        lambda conn: _add_missing_columns(conn, ACTIVITY_DOCUMENTS, _JOIN_COLUMNS),
    )


async def ensure_collection_table(engine: AsyncEngine, name: str) -> Table:
    """Create (or migrate) the table backing ``name`` plus its indexes."""
    table = document_table(name)

    async def _create(conn: AsyncConnection) -> None:
        exists = await _table_exists(conn, name)
        await conn.run_sync(table.create, checkfirst=True)
        if not exists:
            log.info("Created collection table %s", name)

    await _guarded(engine, f"create table {name}", _create)
    await _guarded(
        engine, f"migrate table {name}",
        lambda conn: _add_missing_columns(conn, name, _DOCUMENT_COLUMNS),
    )
    for index_name, field_name in JSON_INDEXES.get(name, ()):
        await _guarded(
            engine, f"create index {index_name}",
            lambda conn, i=index_name, f=field_name: _create_json_index(conn, name, i, f),
        )
    return table


async def table_columns(conn: AsyncConnection, name: str) -> list[str]:
    result = await conn.exec_driver_sql(f'PRAGMA table_info("{name}")')
    return [row[1] for row in result.fetchall()]


async def describe_tables(engine: AsyncEngine) -> dict[str, dict[str, Any]]:
    """Table names, columns and row counts, for diagnostics."""
    tables: dict[str, dict[str, Any]] = {}
    async with engine.connect() as conn:
        result = await conn.exec_driver_sql(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        for (name,) in result.fetchall():
            columns = await table_columns(conn, name)
            count = (await conn.exec_driver_sql(f'SELECT COUNT(*) FROM "{name}"')).scalar_one()
            tables[name] = {"columns": columns, "rows": count}
    return tables


async def _guarded(engine: AsyncEngine, label: str, step) -> None:
    try:
        async with engine.begin() as conn:
            await step(conn)
    except SQLAlchemyError:
        log.exception("Schema step failed: %s", label)


async def _table_exists(conn: AsyncConnection, name: str) -> bool:
    result = await conn.exec_driver_sql(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    )
    return result.first() is not None


async def _create_join_table(conn: AsyncConnection) -> None:
    exists = await _table_exists(conn, ACTIVITY_DOCUMENTS)
    await conn.run_sync(activity_documents.create, checkfirst=True)
    if not exists:
        log.info("Created join table %s", ACTIVITY_DOCUMENTS)


async def _add_missing_columns(
    conn: AsyncConnection, name: str, expected: dict[str, str]
) -> None:
    if not await _table_exists(conn, name):
        return
    present = set(await table_columns(conn, name))
    for column, backfill in expected.items():
        if column in present:
            continue
        # ALTER TABLE only accepts constant defaults; backfill separately.
        await conn.exec_driver_sql(
            f'ALTER TABLE "{name}" ADD COLUMN {column} INTEGER NOT NULL DEFAULT 0'
        )
        await conn.exec_driver_sql(f'UPDATE "{name}" SET {column} = {backfill}')
        log.info("Migrated %s: added column %s", name, column)


async def _create_json_index(
    conn: AsyncConnection, table_name: str, index_name: str, field_name: str
) -> None:
    await conn.exec_driver_sql(
        f'CREATE INDEX IF NOT EXISTS "{index_name}" '
        f"ON \"{table_name}\"(json_extract(data, '$.{field_name}'))"
    )
