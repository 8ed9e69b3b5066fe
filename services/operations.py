"""Bulk write operations that shape and fill station documents.

Persisted layout, one document per station::

    {"stationId": 114, "sensors": [{"key": "PM10", "values": [{"date": ..., "value": ...}]}]}

Two merge strategies exist for sensor values and are kept as separate
functions: :func:`build_sensor_merge_operations` adds with set semantics
(full sync), :func:`build_latest_replacement_operations` removes and
re-inserts the newest point (periodic update).
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Set

from pymongo import UpdateOne

from models.records import SensorReadings, Station
from services.time_normalizer import TimeNormalizer


def _sensor_filter(station_id: int, sensor_key: str) -> Dict[str, Any]:
    return {"$and": [{"stationId": station_id}, {"sensors.key": sensor_key}]}


def build_station_creation_operations(stations: Iterable[Station]) -> List[UpdateOne]:
    """One upsert per station that only writes on insert."""
    return [
        UpdateOne(
            {"stationId": station.id},
            {"$setOnInsert": {"stationId": station.id, "sensors": []}},
            upsert=True,
        )
        for station in stations
    ]


def build_sensor_merge_operations(
    station_id: int,
    sensors: Iterable[SensorReadings],
    stored_sensor_keys: Iterable[str],
    normalizer: TimeNormalizer,
) -> List[UpdateOne]:
    """Create missing sensor sub-documents, then add fetched values without duplicates.

    The creation op for a key always precedes its ``$addToSet`` op, so the
    list must be submitted as an ordered bulk write.
    """
    known_keys: Set[str] = set(stored_sensor_keys)
    operations: List[UpdateOne] = []

    for sensor in sensors:
        if sensor.key not in known_keys:
            operations.append(
                UpdateOne(
                    {"stationId": station_id},
                    {"$push": {"sensors": {"key": sensor.key, "values": []}}},
                )
            )
            known_keys.add(sensor.key)

        if not sensor.values:
            continue

        values = [
            {"date": normalizer.compensate(measurement.date), "value": measurement.value}
            for measurement in sensor.values
        ]
        operations.append(
            UpdateOne(
                _sensor_filter(station_id, sensor.key),
                {"$addToSet": {"sensors.$.values": {"$each": values}}},
            )
        )

    return operations


def build_latest_replacement_operations(
    station_id: int,
    sensors: Iterable[SensorReadings],
    normalizer: TimeNormalizer,
) -> List[UpdateOne]:
    """Replace the newest measurement of each sensor with a pull/push pair.

    Only ``values[0]`` is considered. A stored value with the same date is
    removed first so a revised reading overwrites the old one.
    """
    operations: List[UpdateOne] = []

    for sensor in sensors:
        if not sensor.values:
            continue
        latest = sensor.values[0]
        measured_at = normalizer.compensate(latest.date)
        sensor_filter = _sensor_filter(station_id, sensor.key)
        operations.append(
            UpdateOne(sensor_filter, {"$pull": {"sensors.$.values": {"date": measured_at}}})
        )
        operations.append(
            UpdateOne(
                sensor_filter,
                {"$push": {"sensors.$.values": {"date": measured_at, "value": latest.value}}},
            )
        )

    return operations
