import copy
import time
import uuid
from datetime import datetime
from typing import Dict, Iterator, List

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from datastore.mock_mongo import MockStationCollection
from models.records import Measurement, SensorReadings, Station
from services.aggregator import AverageQueryService
from services.errors import StoreConnectionFailure
from services.sync import StationSyncService
from services.time_normalizer import TimeNormalizer


class StubSource:
    def __init__(self, stations: Dict[int, List[SensorReadings]]) -> None:
        self.stations = stations
        self.closed = False

    def fetch_all_stations(self) -> List[Station]:
        return [Station(id=station_id) for station_id in self.stations]

    def fetch_station_measurements(self, station_id: int) -> List[SensorReadings]:
        return copy.deepcopy(self.stations[station_id])

    def close(self) -> None:
        self.closed = True


def _cached(value):
    def factory():
        return value

    factory.cache_clear = lambda: None  # type: ignore[attr-defined]
    return factory


@pytest.fixture
def source() -> StubSource:
    return StubSource(
        {
            114: [
                SensorReadings(
                    "PM10",
                    [
                        Measurement(datetime(2024, 3, 11, 9), 6.0),
                        Measurement(datetime(2024, 3, 11, 8), 4.0),
                        Measurement(datetime(2024, 3, 10, 23, 59, 59), 10.0),
                    ],
                ),
                SensorReadings("NO2", [Measurement(datetime(2024, 3, 12, 8), 30.0)]),
            ]
        }
    )


@pytest.fixture
def api_client(source: StubSource, monkeypatch) -> Iterator[TestClient]:
    collection = MockStationCollection(name="stations")
    normalizer = TimeNormalizer(offset_hours=2)
    service = StationSyncService(collection=collection, source=source, normalizer=normalizer)
    queries = AverageQueryService(collection=collection, normalizer=normalizer)

    monkeypatch.setattr("app.main.build_default_collection", _cached(collection))
    monkeypatch.setattr("app.main.build_default_source", _cached(source))
    monkeypatch.setattr("app.main.build_default_sync_service", _cached(service))
    monkeypatch.setattr("app.main.build_default_query_service", _cached(queries))
    monkeypatch.setattr("app.api.build_default_sync_service", _cached(service))
    monkeypatch.setattr("app.api.build_default_query_service", _cached(queries))

    app = create_app()
    with TestClient(app) as client:
        yield client

    assert source.closed is True
    assert service.executor._shutdown is True


def _poll_for_completion(client: TestClient, run_id: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    last_payload: dict | None = None
    while time.monotonic() < deadline:
        response = client.get(f"/sync/{run_id}")
        assert response.status_code == 200
        payload = response.json()
        last_payload = payload
        if payload["status"] not in {"queued", "running"}:
            return payload
        time.sleep(0.05)
    pytest.fail(f"Run {run_id} did not complete: {last_payload}")


def _run(client: TestClient, kind: str) -> dict:
    response = client.post(f"/sync/{kind}")
    assert response.status_code == 202
    payload = response.json()
    assert set(payload.keys()) == {"run_id"}
    return _poll_for_completion(client, payload["run_id"])


def test_setup_then_daily_average(api_client: TestClient) -> None:
    report = _run(api_client, "setup")

    assert report["status"] == "succeeded"
    assert report["kind"] == "setup"
    assert report["station_count"] == 1
    assert report["error"] is None

    response = api_client.get("/stations/114/averages/daily", params={"day": "2024-03-11"})

    assert response.status_code == 200
    rows = response.json()
    assert len(rows) == 1
    assert rows[0]["_id"] == "PM10"
    assert rows[0]["stationId"] == 114
    assert rows[0]["average"] == 6.67
    assert rows[0]["date"].startswith("2024-03-11T00:00:00")


def test_range_average(api_client: TestClient) -> None:
    _run(api_client, "setup")

    response = api_client.get(
        "/stations/114/averages", params={"from": "2024-03-10", "to": "2024-03-13"}
    )

    assert response.status_code == 200
    rows = {row["_id"]: row for row in response.json()}
    assert rows["NO2"]["average"] == 30.0
    assert rows["PM10"]["average"] == 6.67
    assert rows["PM10"]["from"].startswith("2024-03-10T00:00:00")
    assert rows["PM10"]["to"].startswith("2024-03-13T00:00:00")


def test_update_run_replaces_latest_value(api_client: TestClient, source: StubSource) -> None:
    _run(api_client, "setup")
    source.stations[114][0].values[0] = Measurement(datetime(2024, 3, 11, 9), 12.0)

    report = _run(api_client, "update")

    assert report["status"] == "succeeded"
    assert report["kind"] == "update"
    rows = api_client.get("/stations/114/averages/daily", params={"day": "2024-03-11"}).json()
    assert rows[0]["average"] == 8.67


def test_range_with_end_before_start_is_rejected(api_client: TestClient) -> None:
    response = api_client.get(
        "/stations/114/averages", params={"from": "2024-03-13", "to": "2024-03-10"}
    )

    assert response.status_code == 400
    assert "precede" in response.json()["detail"]


def test_invalid_day_is_unprocessable(api_client: TestClient) -> None:
    response = api_client.get("/stations/114/averages/daily", params={"day": "yesterday"})

    assert response.status_code == 422


def test_unknown_sync_kind_is_unprocessable(api_client: TestClient) -> None:
    assert api_client.post("/sync/rebuild").status_code == 422


def test_get_missing_run_returns_not_found(api_client: TestClient) -> None:
    missing_id = str(uuid.uuid4())
    response = api_client.get(f"/sync/{missing_id}")

    assert response.status_code == 404
    assert missing_id in response.json()["detail"]


def test_health_endpoints(api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {"status": "ok"}
    assert api_client.get("/").json()["status"] == "ok"


def test_startup_aborts_when_store_is_unreachable(monkeypatch) -> None:
    def unreachable():
        raise StoreConnectionFailure("Could not connect to MongoDB at mongodb://nowhere")

    monkeypatch.setattr("app.main.build_default_collection", unreachable)

    app = create_app()
    with pytest.raises(StoreConnectionFailure):
        with TestClient(app):
            pass
