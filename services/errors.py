"""Failure types raised by the synchronization and storage layers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


class StationSyncError(Exception):
    """Base error; records when the failure happened."""

    def __init__(self, message: str, occurred_at: Optional[datetime] = None) -> None:
        self.occurred_at = occurred_at or datetime.now(timezone.utc)
        super().__init__(f"{message} at {self.occurred_at.isoformat()}")


class BatchWriteFailure(StationSyncError):
    """The store did not report a bulk write as ok."""


class StoreConnectionFailure(StationSyncError):
    """The initial connection to the document store failed."""


class SourceFetchFailure(StationSyncError):
    """The external station source could not be read."""
