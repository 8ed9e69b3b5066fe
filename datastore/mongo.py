"""Process-wide station collection handle."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from datastore.mock_mongo import MockStationCollection
from services.errors import StoreConnectionFailure
from settings import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def build_default_client() -> MongoClient:
    """Open and verify the shared MongoDB client."""
    settings = get_settings()
    client: MongoClient = MongoClient(
        settings.mongo_uri,
        tz_aware=True,
        serverSelectionTimeoutMS=settings.mongo_timeout_ms,
    )
    try:
        client.admin.command("ping")
    except PyMongoError as exc:
        client.close()
        raise StoreConnectionFailure(
            f"Could not connect to MongoDB at {settings.mongo_uri}: {exc}"
        ) from exc
    logger.info("Connected to MongoDB %s, database %s", settings.mongo_uri, settings.database_name)
    return client


@lru_cache
def build_default_collection() -> Any:
    settings = get_settings()
    if settings.store_backend == "memory":
        path = Path(settings.memory_store_path) if settings.memory_store_path else None
        logger.info("Using in-process station collection %s", settings.collection_name)
        return MockStationCollection(name=settings.collection_name, persistence_path=path)
    client = build_default_client()
    return client[settings.database_name][settings.collection_name]


def close_default_store() -> None:
    """Close the shared client, if one was opened, and reset the cached handles."""
    if build_default_client.cache_info().currsize:
        build_default_client().close()
    build_default_client.cache_clear()
    build_default_collection.cache_clear()
