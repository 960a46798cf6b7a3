"""Async engine for the embedded SQLite document store."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .config import settings

log = logging.getLogger(__name__)

_engines: dict[str, AsyncEngine] = {}


def _apply_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def create_engine_for_path(path: str | Path, *, echo: bool | None = None) -> AsyncEngine:
    """Open (creating parent directories) the SQLite file at ``path``."""
    db_path = Path(path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=settings.echo_sql if echo is None else echo,
    )
    event.listen(engine.sync_engine, "connect", _apply_pragmas)
    log.info("Opened embedded store at %s", db_path)
    return engine


def get_engine(path: str | Path | None = None) -> AsyncEngine:
    """Process-wide engine per database file, reused across requests."""
    db_path = Path(path) if path is not None else settings.database_path
    key = str(db_path.resolve())
    engine = _engines.get(key)
    if engine is None:
        engine = create_engine_for_path(db_path)
        _engines[key] = engine
    return engine


async def dispose_engines() -> None:
    while _engines:
        _, engine = _engines.popitem()
        await engine.dispose()
