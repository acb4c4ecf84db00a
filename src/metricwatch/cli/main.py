# Copyright (c) Syntropy Systems
"""Main CLI entry point for metricwatch."""

import logging

import typer
from rich.logging import RichHandler

from metricwatch.cli.collect import collect
from metricwatch.cli.observations import observations_app
from metricwatch.cli.server_cmd import server

app = typer.Typer(
    name="metricwatch",
    help=(
        "Metrics collector for tuning trials. Parse training logs, "
        "stop trials early, report observations."
    ),
    no_args_is_help=True,
    add_completion=False,
)


def setup_logging(verbose: bool = False) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Log every metrics file line and other debug output",
    ),
) -> None:
    """Metrics collector for tuning trials."""
    setup_logging(verbose)


# Register commands
_ = app.command()(collect)
_ = app.command()(server)

# Register observations sub-app
app.add_typer(observations_app, name="observations")


if __name__ == "__main__":
    app()
