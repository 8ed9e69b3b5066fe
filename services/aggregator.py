"""Read-only average queries over persisted station documents."""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Dict, List

from app.schemas import DailyAverage, RangeAverage
from datastore.mongo import build_default_collection
from services.time_normalizer import DateLike, TimeNormalizer
from settings import get_settings


def _average_pipeline(
    station_id: int,
    start: datetime,
    end: datetime,
    tags: Dict[str, Any],
) -> List[Dict[str, Any]]:
    projection: Dict[str, Any] = {"stationId": {"$literal": station_id}}
    projection.update({name: {"$literal": value} for name, value in tags.items()})
    projection.update({"_id": 1, "average": {"$round": ["$average", 2]}})
    return [
        {"$match": {"stationId": station_id}},
        {"$unwind": "$sensors"},
        {"$unwind": "$sensors.values"},
        {"$match": {"sensors.values.date": {"$gte": start, "$lt": end}}},
        {"$group": {"_id": "$sensors.key", "average": {"$avg": "$sensors.values.value"}}},
        {"$project": projection},
        {"$sort": {"_id": 1}},
    ]


def build_daily_average_pipeline(
    station_id: int, day_start: datetime, day_end: datetime
) -> List[Dict[str, Any]]:
    return _average_pipeline(station_id, day_start, day_end, {"date": day_start})


def build_range_average_pipeline(
    station_id: int, start: datetime, end: datetime
) -> List[Dict[str, Any]]:
    return _average_pipeline(station_id, start, end, {"from": start, "to": end})


class AverageQueryService:
    """Per-sensor averages for one station over a day or a ``[from, to)`` range.

    Sensors without measurements inside the window produce no row.
    """

    def __init__(self, collection: Any, normalizer: TimeNormalizer) -> None:
        self.collection = collection
        self.normalizer = normalizer

    def find_average_for_day(self, station_id: int | str, day: DateLike) -> List[DailyAverage]:
        day_start = self.normalizer.day_start(day)
        day_end = day_start + timedelta(days=1)
        pipeline = build_daily_average_pipeline(int(station_id), day_start, day_end)
        return [DailyAverage.model_validate(row) for row in self.collection.aggregate(pipeline)]

    def find_average_from_to(
        self, station_id: int | str, start: DateLike, end: DateLike
    ) -> List[RangeAverage]:
        range_start = self.normalizer.day_start(start)
        range_end = self.normalizer.day_start(end)
        if range_end < range_start:
            raise ValueError("Range end must not precede range start.")
        pipeline = build_range_average_pipeline(int(station_id), range_start, range_end)
        return [RangeAverage.model_validate(row) for row in self.collection.aggregate(pipeline)]


@lru_cache
def build_default_query_service() -> AverageQueryService:
    settings = get_settings()
    return AverageQueryService(
        collection=build_default_collection(),
        normalizer=TimeNormalizer(settings.source_offset_hours),
    )
