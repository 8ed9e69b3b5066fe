from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_averages, render_report


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for driving the station sync service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    poll_interval: Optional[float] = typer.Option(
        None,
        "--poll-interval",
        help="Seconds between status checks when waiting for a run.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Maximum seconds to wait when polling a run.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(
        base_url=base_url,
        poll_interval=poll_interval,
        poll_timeout=timeout,
    )
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


def _start_run(ctx: typer.Context, kind: str, wait: bool) -> None:
    state = _get_state(ctx)
    run_id = state.client.start_run(kind)
    typer.secho(f"Database {kind} queued. run_id={run_id}", fg=typer.colors.GREEN)

    if not wait:
        return

    config = state.config
    typer.echo(f"Waiting for run (interval={config.poll_interval}s, timeout={config.poll_timeout}s)...")
    payload = state.client.poll_run(run_id, interval=config.poll_interval, timeout=config.poll_timeout)
    typer.echo()
    render_report(payload)
    if payload.get("status") != "succeeded":
        raise typer.Exit(code=1)


@app.command("setup")
def setup_command(
    ctx: typer.Context,
    wait: bool = typer.Option(False, "--wait/--no-wait", help="Wait for the run to finish."),
) -> None:
    """Create missing station documents and merge all fetched measurements."""
    _start_run(ctx, "setup", wait)


@app.command("update")
def update_command(
    ctx: typer.Context,
    wait: bool = typer.Option(False, "--wait/--no-wait", help="Wait for the run to finish."),
) -> None:
    """Replace the latest measurement of every sensor."""
    _start_run(ctx, "update", wait)


@app.command("status")
def status_command(
    ctx: typer.Context,
    run_id: str = typer.Argument(..., help="Identifier returned from setup or update."),
) -> None:
    """Show the status of a sync run."""
    state = _get_state(ctx)
    render_report(state.client.get_run(run_id))


@app.command("daily")
def daily_command(
    ctx: typer.Context,
    station_id: int = typer.Argument(..., help="Station identifier."),
    day: datetime = typer.Argument(..., formats=["%Y-%m-%d"], help="Day, YYYY-MM-DD."),
) -> None:
    """Per-sensor averages for one day."""
    state = _get_state(ctx)
    rows = state.client.daily_averages(station_id, day.date())
    render_averages(f"Station {station_id} on {day.date().isoformat()}", rows)


@app.command("range")
def range_command(
    ctx: typer.Context,
    station_id: int = typer.Argument(..., help="Station identifier."),
    start: datetime = typer.Argument(..., formats=["%Y-%m-%d"], help="First day included."),
    end: datetime = typer.Argument(..., formats=["%Y-%m-%d"], help="First day excluded."),
) -> None:
    """Per-sensor averages over [START, END)."""
    state = _get_state(ctx)
    rows = state.client.range_averages(station_id, start.date(), end.date())
    render_averages(
        f"Station {station_id} from {start.date().isoformat()} to {end.date().isoformat()}",
        rows,
    )
