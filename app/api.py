"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import DailyAverage, RangeAverage, SyncKind, SyncReport, SyncRunResponse
from services.aggregator import AverageQueryService, build_default_query_service
from services.sync import StationSyncService, build_default_sync_service

router = APIRouter()


def get_sync_service() -> StationSyncService:
    return build_default_sync_service()


def get_query_service() -> AverageQueryService:
    return build_default_query_service()


@router.post(
    "/sync/{kind}",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=SyncRunResponse,
    summary="Start a setup or update run in the background.",
)
async def start_sync(
    kind: SyncKind,
    service: StationSyncService = Depends(get_sync_service),
) -> SyncRunResponse:
    run_id = service.enqueue(kind)
    return SyncRunResponse(run_id=run_id)


@router.get(
    "/sync/{run_id}",
    response_model=SyncReport,
    summary="Fetch the status of a setup or update run.",
)
async def get_sync_report(
    run_id: str,
    service: StationSyncService = Depends(get_sync_service),
) -> SyncReport:
    try:
        return service.fetch_report(run_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc


@router.get(
    "/stations/{station_id}/averages/daily",
    response_model=List[DailyAverage],
    summary="Per-sensor averages for one station over a single day.",
)
def get_daily_averages(
    station_id: int,
    day: date = Query(..., description="Day to average, YYYY-MM-DD."),
    queries: AverageQueryService = Depends(get_query_service),
) -> List[DailyAverage]:
    return queries.find_average_for_day(station_id, day)


@router.get(
    "/stations/{station_id}/averages",
    response_model=List[RangeAverage],
    summary="Per-sensor averages for one station over [from, to).",
)
def get_range_averages(
    station_id: int,
    start: date = Query(..., alias="from", description="First day included, YYYY-MM-DD."),
    end: date = Query(..., alias="to", description="First day excluded, YYYY-MM-DD."),
    queries: AverageQueryService = Depends(get_query_service),
) -> List[RangeAverage]:
    try:
        return queries.find_average_from_to(station_id, start, end)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
