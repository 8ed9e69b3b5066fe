from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_MONGO_URI_ENV = "MONGO_URI"
_MONGO_DATABASE_ENV = "MONGO_DATABASE"
_MONGO_COLLECTION_ENV = "MONGO_COLLECTION"
_MONGO_TIMEOUT_ENV = "MONGO_TIMEOUT_MS"
_STORE_BACKEND_ENV = "STORE_BACKEND"
_MEMORY_STORE_PATH_ENV = "MEMORY_STORE_PATH"
_SOURCE_BASE_URL_ENV = "SOURCE_BASE_URL"
_SOURCE_TIMEOUT_ENV = "SOURCE_TIMEOUT"
_SOURCE_OFFSET_ENV = "SOURCE_TIME_OFFSET_HOURS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_STORE_BACKENDS = {"mongo", "memory"}


@dataclass(frozen=True)
class Settings:
    mongo_uri: str
    database_name: str
    collection_name: str
    mongo_timeout_ms: int
    store_backend: str
    memory_store_path: Optional[str]
    source_base_url: str
    source_timeout: float
    source_offset_hours: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_offset_hours(default: int) -> int:
    # Zero and negative offsets are valid here, unlike the other numeric settings.
    value = os.getenv(_SOURCE_OFFSET_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if -14 <= parsed <= 14 else default


def _read_store_backend(default: str) -> str:
    candidate = _read_str_env(_STORE_BACKEND_ENV, default).lower()
    return candidate if candidate in _STORE_BACKENDS else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        mongo_uri=_read_str_env(_MONGO_URI_ENV, "mongodb://localhost:27017"),
        database_name=_read_str_env(_MONGO_DATABASE_ENV, "weather-api-database"),
        collection_name=_read_str_env(_MONGO_COLLECTION_ENV, "stations"),
        mongo_timeout_ms=_read_positive_int(_MONGO_TIMEOUT_ENV, 5000),
        store_backend=_read_store_backend("mongo"),
        memory_store_path=_read_optional_env(_MEMORY_STORE_PATH_ENV, "./tmp/mock_mongo.json"),
        source_base_url=_read_str_env(
            _SOURCE_BASE_URL_ENV, "https://api.gios.gov.pl/pjp-api/rest"
        ),
        source_timeout=_read_positive_float(_SOURCE_TIMEOUT_ENV, 30.0),
        source_offset_hours=_read_offset_hours(2),
        log_level=_read_log_level("INFO"),
    )
