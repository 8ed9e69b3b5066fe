"""Setup and update runs that fill the station collection from the source."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from threading import Lock
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pymongo import UpdateOne
from pymongo.errors import PyMongoError

from app.schemas import SyncKind, SyncReport, SyncStatus
from datastore.mongo import build_default_collection
from services.batch import BatchExecutor
from services.errors import StationSyncError
from services.operations import (
    build_latest_replacement_operations,
    build_sensor_merge_operations,
    build_station_creation_operations,
)
from services.time_normalizer import TimeNormalizer
from settings import get_settings
from sources.station_source import StationSource, build_default_source

logger = logging.getLogger(__name__)

_STORED_SENSOR_KEYS = {"_id": 0, "stationId": 1, "sensors.key": 1}


@dataclass
class _RunProgress:
    station_count: int = 0
    operation_count: int = 0


class StationSyncService:
    """Runs setup (structure + full merge) and update (latest-value replace).

    Stations are fetched and merged one after another; each run ends with a
    single bulk write whose outcome decides the run status. Background runs
    share one worker thread, so two runs never overlap.
    """

    def __init__(
        self,
        collection: Any,
        source: StationSource,
        normalizer: TimeNormalizer,
        batches: Optional[BatchExecutor] = None,
    ) -> None:
        self.collection = collection
        self.source = source
        self.normalizer = normalizer
        self.batches = batches or BatchExecutor(collection)
        self.executor = ThreadPoolExecutor(max_workers=1)
        self._futures: Dict[str, Future[SyncReport]] = {}
        self._futures_lock = Lock()
        self._reports: Dict[str, SyncReport] = {}
        self._reports_lock = Lock()

    def run_setup(self) -> SyncReport:
        return self._run(SyncKind.setup, str(uuid4()), datetime.now(timezone.utc))

    def run_update(self) -> SyncReport:
        return self._run(SyncKind.update, str(uuid4()), datetime.now(timezone.utc))

    def enqueue(self, kind: SyncKind) -> str:
        """Queue a run on the background worker and return its id."""
        run_id = str(uuid4())
        queued_at = datetime.now(timezone.utc)
        self._store_report(
            SyncReport(run_id=run_id, kind=kind, status=SyncStatus.queued, queued_at=queued_at)
        )

        future = self.executor.submit(self._run, kind, run_id, queued_at)
        with self._futures_lock:
            self._futures[run_id] = future
        future.add_done_callback(lambda _f, rid=run_id: self._clear_future(rid))
        return run_id

    def fetch_report(self, run_id: str) -> SyncReport:
        with self._reports_lock:
            report = self._reports.get(run_id)
        if report is None:
            raise KeyError(f"Sync run {run_id!r} not found.")
        return report.model_copy(deep=True)

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _clear_future(self, run_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(run_id, None)

    def _store_report(self, report: SyncReport) -> None:
        with self._reports_lock:
            self._reports[report.run_id] = report

    def _run(self, kind: SyncKind, run_id: str, queued_at: datetime) -> SyncReport:
        started_at = datetime.now(timezone.utc)
        self._store_report(
            SyncReport(
                run_id=run_id,
                kind=kind,
                status=SyncStatus.running,
                queued_at=queued_at,
                started_at=started_at,
            )
        )
        logger.info("Database %s started", kind.value, extra={"run_id": run_id})

        progress = _RunProgress()
        error: Optional[str] = None
        try:
            if kind is SyncKind.setup:
                self._construct_structure(run_id, progress)
                self._fill_initial_values(run_id, progress)
            else:
                self._fill_new_values(run_id, progress)
        except (StationSyncError, PyMongoError) as exc:
            error = str(exc)
            status = SyncStatus.failed
            logger.error(
                "Database %s failed",
                kind.value,
                extra={"run_id": run_id, "status": status.value, "reason": error},
            )
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            status = SyncStatus.failed
            logger.exception(
                "Database %s failed unexpectedly",
                kind.value,
                extra={"run_id": run_id, "status": status.value, "reason": error},
            )
        else:
            status = SyncStatus.succeeded
            logger.info(
                "Database %s complete",
                kind.value,
                extra={
                    "run_id": run_id,
                    "status": status.value,
                    "operation_count": progress.operation_count,
                },
            )

        report = SyncReport(
            run_id=run_id,
            kind=kind,
            status=status,
            queued_at=queued_at,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            station_count=progress.station_count,
            operation_count=progress.operation_count,
            error=error,
        )
        self._store_report(report)
        return report

    def _construct_structure(self, run_id: str, progress: _RunProgress) -> None:
        stations = self.source.fetch_all_stations()
        operations = build_station_creation_operations(stations)
        progress.operation_count += len(operations)
        self.batches.execute(operations, phase="structure construction")
        logger.info(
            "Station documents ensured",
            extra={"run_id": run_id, "operation_count": len(operations)},
        )

    def _fill_initial_values(self, run_id: str, progress: _RunProgress) -> None:
        documents = list(self.collection.find({}, _STORED_SENSOR_KEYS))
        operations: List[UpdateOne] = []
        for position, document in enumerate(documents, start=1):
            station_id = document["stationId"]
            sensors = self.source.fetch_station_measurements(station_id)
            stored_keys = [sensor["key"] for sensor in document.get("sensors") or []]
            operations.extend(
                build_sensor_merge_operations(station_id, sensors, stored_keys, self.normalizer)
            )
            progress.station_count = position
            self._log_progress(run_id, station_id, position, len(documents))

        progress.operation_count += len(operations)
        self.batches.execute(operations, phase="initial values")

    def _fill_new_values(self, run_id: str, progress: _RunProgress) -> None:
        stations = self.source.fetch_all_stations()
        operations: List[UpdateOne] = []
        for position, station in enumerate(stations, start=1):
            sensors = self.source.fetch_station_measurements(station.id)
            operations.extend(
                build_latest_replacement_operations(station.id, sensors, self.normalizer)
            )
            progress.station_count = position
            self._log_progress(run_id, station.id, position, len(stations))

        progress.operation_count += len(operations)
        self.batches.execute(operations, phase="new values")

    @staticmethod
    def _log_progress(run_id: str, station_id: int, position: int, total: int) -> None:
        logger.info(
            "Station processed",
            extra={"run_id": run_id, "station_id": station_id, "progress": f"{position}/{total}"},
        )


@lru_cache
def build_default_sync_service() -> StationSyncService:
    """Factory that wires the sync service with the configured store and source."""
    settings = get_settings()
    return StationSyncService(
        collection=build_default_collection(),
        source=build_default_source(),
        normalizer=TimeNormalizer(settings.source_offset_hours),
    )
