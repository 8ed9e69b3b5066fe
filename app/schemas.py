"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SyncKind(str, Enum):
    """Kinds of synchronization runs."""

    setup = "setup"
    update = "update"


class SyncStatus(str, Enum):
    """Run lifecycle states exposed via the API."""

    queued = "queued"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


class SyncRunResponse(BaseModel):
    """Immediate response payload after accepting a run."""

    run_id: str = Field(..., description="Generated identifier for the run.")


class SyncReport(BaseModel):
    """Outcome of a setup or update run."""

    run_id: str
    kind: SyncKind
    status: SyncStatus
    queued_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    station_count: int = Field(default=0, ge=0)
    operation_count: int = Field(default=0, ge=0)
    error: Optional[str] = None


class _AverageRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sensor_key: str = Field(..., alias="_id")
    station_id: int = Field(..., alias="stationId")
    average: float


class DailyAverage(_AverageRow):
    """Average of one sensor over a single UTC day."""

    date: datetime


class RangeAverage(_AverageRow):
    """Average of one sensor over ``[from, to)``."""

    from_: datetime = Field(..., alias="from")
    to: datetime
