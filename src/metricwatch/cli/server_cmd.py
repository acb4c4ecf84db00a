"""CLI command for running the metricwatch server."""

from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console

from ..errors import StoreError
from ..store import DB_PATH_ENV

console = Console()


def server(
    port: int = typer.Option(6789, "--port", "-p", help="Port to listen on"),
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db-path",
        "-d",
        envvar=DB_PATH_ENV,
        help="SQLite database file for observation logs",
    ),
):
    """
    Start the observation and early stopping service.

    Collectors report observation logs and early stopped trials to it;
    tuning controllers read them back.

    Examples:

        # Serve observations from a local database
        metricwatch server --db-path /data/metricwatch.db

        # Bind to all interfaces (for remote access)
        metricwatch server --db-path /data/metricwatch.db --host 0.0.0.0
    """
    if db_path is None:
        console.print("[red]Error:[/red] No database configuration provided.")
        console.print()
        console.print("Provide one of:")
        console.print("  --db-path /path/to/metricwatch.db")
        console.print(f"  {DB_PATH_ENV} environment variable")
        raise typer.Exit(1)

    db_path.parent.mkdir(parents=True, exist_ok=True)

    console.print("[bold]metricwatch server[/bold]")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print(f"  Database: {db_path}")
    console.print()

    from ..server.app import create_app

    try:
        app = create_app(db_path=db_path)
    except StoreError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
    )
