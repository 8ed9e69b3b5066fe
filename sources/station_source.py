"""Clients for the external source of stations and sensor readings."""

from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, List, Optional, Protocol

import httpx

from models.records import Measurement, SensorReadings, Station
from services.errors import SourceFetchFailure
from settings import get_settings

logger = logging.getLogger(__name__)


class StationSource(Protocol):
    def fetch_all_stations(self) -> List[Station]: ...

    def fetch_station_measurements(self, station_id: int) -> List[SensorReadings]: ...


class HttpStationSource:
    """GIOŚ-style REST source.

    ``/station/findAll`` lists stations, ``/station/sensors/{id}`` lists a
    station's sensors and ``/data/getData/{sensorId}`` returns
    ``{"key": ..., "values": [{"date": ..., "value": ...}]}`` newest first.
    Source dates are returned as parsed, without timezone compensation.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def fetch_all_stations(self) -> List[Station]:
        payload = self._get_json("/station/findAll")
        try:
            return [Station(id=int(item["id"])) for item in payload]
        except (KeyError, TypeError, ValueError) as exc:
            raise SourceFetchFailure(f"Malformed station list: {exc}") from exc

    def fetch_station_measurements(self, station_id: int) -> List[SensorReadings]:
        sensors = self._get_json(f"/station/sensors/{station_id}")
        if not isinstance(sensors, list):
            raise SourceFetchFailure(
                f"Malformed sensor list for station {station_id}: "
                f"expected a list, got {type(sensors).__name__}"
            )
        readings: List[SensorReadings] = []
        for sensor in sensors:
            try:
                sensor_id = sensor["id"]
            except (KeyError, TypeError) as exc:
                raise SourceFetchFailure(
                    f"Malformed sensor list for station {station_id}: {exc}"
                ) from exc
            sensor_readings = self._parse_sensor_data(self._get_json(f"/data/getData/{sensor_id}"))
            logger.debug(
                "Fetched sensor readings",
                extra={"station_id": station_id, "sensor_key": sensor_readings.key},
            )
            readings.append(sensor_readings)
        return readings

    def _get_json(self, path: str) -> Any:
        try:
            response = self._client.get(path)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            raise SourceFetchFailure(f"Request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise SourceFetchFailure(f"Response from {path} is not valid JSON") from exc

    @staticmethod
    def _parse_sensor_data(payload: Any) -> SensorReadings:
        try:
            key = str(payload["key"])
            raw_values = payload.get("values") or []
            values = [
                Measurement(date=datetime.fromisoformat(item["date"]), value=float(item["value"]))
                for item in raw_values
                # The source reports gaps as null values.
                if item.get("value") is not None
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise SourceFetchFailure(f"Malformed sensor data: {exc}") from exc
        return SensorReadings(key=key, values=values)


@lru_cache
def build_default_source() -> HttpStationSource:
    settings = get_settings()
    return HttpStationSource(base_url=settings.source_base_url, timeout=settings.source_timeout)
