from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from datastore.mongo import build_default_collection, close_default_store
from logging_config import configure_logging
from services.aggregator import build_default_query_service
from services.errors import StoreConnectionFailure
from services.sync import build_default_sync_service
from sources.station_source import build_default_source

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    try:
        build_default_collection()
    except StoreConnectionFailure as exc:
        logger.error("Startup aborted: %s", exc)
        raise
    service = build_default_sync_service()
    try:
        yield
    finally:
        service.shutdown()
        build_default_sync_service.cache_clear()
        build_default_query_service.cache_clear()
        build_default_source().close()
        build_default_source.cache_clear()
        close_default_store()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Station Sync",
        description="Merges weather station readings into MongoDB and serves per-sensor averages.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
