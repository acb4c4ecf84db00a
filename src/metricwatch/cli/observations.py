# Copyright (c) Syntropy Systems
"""metricwatch observations commands."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from metricwatch.client import ReportingClient
from metricwatch.errors import MetricWatchError
from metricwatch.models.observation import ObservationLog
from metricwatch.store import DB_PATH_ENV, SQLiteObservationStore

console = Console()

observations_app = typer.Typer(
    name="observations",
    help="Inspect and delete stored observation logs.",
    no_args_is_help=True,
)


def build_observations_table(trial_name: str, log: ObservationLog) -> Table:
    """Build the observation log table."""
    table = Table(title=f"Observations: {trial_name}", show_header=True, header_style="bold")
    table.add_column("Time", style="dim")
    table.add_column("Metric")
    table.add_column("Value", justify="right")

    if not log.metric_logs:
        table.add_row("-", "[dim]No observations[/dim]", "-")
        return table

    for entry in log.metric_logs:
        table.add_row(entry.time_stamp, entry.metric.name, entry.metric.value)
    return table


def _open_store(db_path: Path) -> SQLiteObservationStore:
    store = SQLiteObservationStore(db_path, connect_timeout=0)
    store.init_schema()
    return store


def _require_source(server: Optional[str], db_path: Optional[Path]) -> None:
    if not server and db_path is None:
        console.print("[red]Error:[/red] Provide --server or --db-path")
        raise typer.Exit(1)


@observations_app.command("show")
def show(
    trial: str = typer.Argument(..., help="Trial name"),
    metric: Optional[str] = typer.Option(None, "--metric", help="Only show this metric"),
    start: Optional[str] = typer.Option(None, "--start", help="RFC3339 start time (inclusive)"),
    end: Optional[str] = typer.Option(None, "--end", help="RFC3339 end time (inclusive)"),
    server: Optional[str] = typer.Option(
        None, "--server", "-s", help="Service URL (e.g., http://db-manager:6789)"
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db-path", "-d", envvar=DB_PATH_ENV, help="Local SQLite database"
    ),
) -> None:
    """Show the observation log of a trial."""
    _require_source(server, db_path)

    try:
        if server:
            with ReportingClient(server) as client:
                log = client.get_observation_log(trial, metric, start, end)
        else:
            store = _open_store(db_path)
            try:
                log = store.get_observation_log(trial, metric, start, end)
            finally:
                store.close()
    except MetricWatchError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(build_observations_table(trial, log))


@observations_app.command("delete")
def delete(
    trial: str = typer.Argument(..., help="Trial name"),
    server: Optional[str] = typer.Option(
        None, "--server", "-s", help="Service URL (e.g., http://db-manager:6789)"
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db-path", "-d", envvar=DB_PATH_ENV, help="Local SQLite database"
    ),
) -> None:
    """Delete the observation log of a trial."""
    _require_source(server, db_path)

    try:
        if server:
            with ReportingClient(server) as client:
                _ = client.delete_observation_log(trial)
        else:
            store = _open_store(db_path)
            try:
                store.delete_observation_log(trial)
            finally:
                store.close()
    except MetricWatchError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(f"[green]Deleted observations for {trial}[/green]")
