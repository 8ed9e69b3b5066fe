from __future__ import annotations

import time
from datetime import date
from typing import Any, Dict, List

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the station sync service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.request_timeout)

    def close(self) -> None:
        self._client.close()

    def start_run(self, kind: str) -> str:
        payload = self._request("POST", f"/sync/{kind}")
        run_id = payload.get("run_id")
        if not isinstance(run_id, str):
            raise typer.BadParameter("Unexpected response payload when starting a run.")
        return run_id

    def get_run(self, run_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/sync/{run_id}", not_found=f"Run {run_id} was not found.")

    def poll_run(self, run_id: str, interval: float, timeout: float) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        last_payload: Dict[str, Any] | None = None
        while time.monotonic() <= deadline:
            last_payload = self.get_run(run_id)
            status = last_payload.get("status")
            if status not in {"queued", "running"}:
                return last_payload
            time.sleep(interval)
        typer.secho(
            (
                f"Timed out waiting for run {run_id}. "
                f"Last status: {last_payload.get('status') if last_payload else 'unknown'}"
            ),
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    def daily_averages(self, station_id: int, day: date) -> List[Dict[str, Any]]:
        return self._request(
            "GET",
            f"/stations/{station_id}/averages/daily",
            params={"day": day.isoformat()},
        )

    def range_averages(self, station_id: int, start: date, end: date) -> List[Dict[str, Any]]:
        return self._request(
            "GET",
            f"/stations/{station_id}/averages",
            params={"from": start.isoformat(), "to": end.isoformat()},
        )

    def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, str] | None = None,
        not_found: str | None = None,
    ) -> Any:
        try:
            response = self._client.request(method, path, params=params)
            if not_found and response.status_code == 404:
                raise typer.BadParameter(not_found)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(f"Could not reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1) from exc
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
