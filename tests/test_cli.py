from __future__ import annotations

from datetime import date
from typing import Any, Dict, List

import pytest
from typer.testing import CliRunner

from cli.app import app
from cli.config import DEFAULT_POLL_INTERVAL, load_config


class StubClient:
    def __init__(self, config, run_id: str = "run-123") -> None:
        self.config = config
        self.run_id = run_id
        self.started: List[str] = []
        self.poll_calls: List[tuple[str, float, float]] = []
        self.average_calls: List[tuple] = []
        self.report: Dict[str, Any] = {
            "run_id": run_id,
            "kind": "setup",
            "status": "succeeded",
            "queued_at": "2024-03-11T00:00:00Z",
            "started_at": "2024-03-11T00:00:01Z",
            "finished_at": "2024-03-11T00:00:09Z",
            "station_count": 2,
            "operation_count": 14,
            "error": None,
        }
        self.rows: List[Dict[str, Any]] = [
            {"_id": "NO2", "stationId": 114, "date": "2024-03-11T00:00:00Z", "average": 21.5},
            {"_id": "PM10", "stationId": 114, "date": "2024-03-11T00:00:00Z", "average": 6.67},
        ]
        self.closed = False

    def start_run(self, kind: str) -> str:
        self.started.append(kind)
        return self.run_id

    def poll_run(self, run_id: str, interval: float, timeout: float) -> Dict[str, Any]:
        self.poll_calls.append((run_id, interval, timeout))
        return self.report

    def get_run(self, run_id: str) -> Dict[str, Any]:
        payload = self.report.copy()
        payload["run_id"] = run_id
        return payload

    def daily_averages(self, station_id: int, day: date) -> List[Dict[str, Any]]:
        self.average_calls.append(("daily", station_id, day))
        return self.rows

    def range_averages(self, station_id: int, start: date, end: date) -> List[Dict[str, Any]]:
        self.average_calls.append(("range", station_id, start, end))
        return self.rows

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _install_stub(monkeypatch, stub: StubClient) -> None:
    def factory(config):
        stub.config = config
        return stub

    monkeypatch.setattr("cli.app.ApiClient", factory)


def test_setup_without_wait(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["setup"])

    assert result.exit_code == 0
    assert "run_id=run-123" in result.stdout
    assert stub.started == ["setup"]
    assert not stub.poll_calls
    assert stub.closed is True


def test_update_with_wait(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["--poll-interval", "0.1", "--timeout", "5", "update", "--wait"])

    assert result.exit_code == 0
    assert stub.started == ["update"]
    assert stub.poll_calls == [("run-123", 0.1, 5.0)]
    assert "Sync Run" in result.stdout
    assert "operation_count: 14" in result.stdout


def test_failed_run_with_wait_exits_non_zero(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    stub.report["status"] = "failed"
    stub.report["error"] = "Bulk write failed during new values at 2024-03-11T00:00:09+00:00"
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["update", "--wait"])

    assert result.exit_code == 1
    assert "Bulk write failed during new values" in result.stdout


def test_status_command(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["status", "run-999"])

    assert result.exit_code == 0
    assert "run_id: run-999" in result.stdout
    assert "status: succeeded" in result.stdout
    assert stub.closed is True


def test_daily_command(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["daily", "114", "2024-03-11"])

    assert result.exit_code == 0
    assert stub.average_calls == [("daily", 114, date(2024, 3, 11))]
    assert "Station 114 on 2024-03-11" in result.stdout
    assert "PM10: 6.67" in result.stdout


def test_range_command_with_no_rows(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    stub.rows = []
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["range", "114", "2024-01-01", "2024-01-03"])

    assert result.exit_code == 0
    assert stub.average_calls == [("range", 114, date(2024, 1, 1), date(2024, 1, 3))]
    assert "No measurements in range." in result.stdout


def test_base_url_option_reaches_client(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    runner.invoke(app, ["--base-url", "http://sync.local:9000/", "status", "run-1"])

    assert stub.config.base_url == "http://sync.local:9000"


def test_load_config_ignores_invalid_environment(monkeypatch) -> None:
    monkeypatch.setenv("CLI_POLL_INTERVAL", "-3")
    monkeypatch.setenv("CLI_REQUEST_TIMEOUT", "12.5")

    config = load_config()

    assert config.poll_interval == DEFAULT_POLL_INTERVAL
    assert config.request_timeout == 12.5
