"""FastAPI application factory for the XR studio document API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .database import dispose_engines
from .store import get_store

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    log.info("Starting %s with %s backend", settings.app_title, store.mode.value)
    await store.initialize()
    yield
    await store.close()
    await dispose_engines()


app = FastAPI(title=settings.app_title, lifespan=lifespan)

# Import and register routers
from .routers import activities, diagnosis, documents, health, pairing  # noqa: E402

app.include_router(activities.router)
app.include_router(documents.router)
app.include_router(pairing.router)
app.include_router(diagnosis.router)
app.include_router(health.router)
