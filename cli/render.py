from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_report(payload: Dict[str, Any]) -> None:
    echo_heading("Sync Run")
    echo_key_values(
        [
            ("run_id", payload.get("run_id")),
            ("kind", payload.get("kind")),
            ("status", payload.get("status")),
            ("queued_at", payload.get("queued_at")),
            ("started_at", payload.get("started_at")),
            ("finished_at", payload.get("finished_at")),
            ("station_count", payload.get("station_count")),
            ("operation_count", payload.get("operation_count")),
        ]
    )
    error = payload.get("error")
    if error:
        typer.echo()
        typer.secho(f"Error: {error}", fg=typer.colors.RED)


def render_averages(heading: str, rows: List[Dict[str, Any]]) -> None:
    echo_heading(heading)
    if not rows:
        typer.echo("No measurements in range.")
        return
    for row in rows:
        typer.echo(f"  - {row.get('_id')}: {row.get('average')}")
