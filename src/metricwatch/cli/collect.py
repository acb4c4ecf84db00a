# Copyright (c) Syntropy Systems
"""metricwatch collect command."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from metricwatch.client import ReportingClient
from metricwatch.collector import MetricsCollector
from metricwatch.config import (
    DB_MANAGER_URL_ENV,
    EARLY_STOP_URL_ENV,
    load_config,
    split_list,
)
from metricwatch.errors import ParseError
from metricwatch.extractor import split_filters
from metricwatch.rules import ObjectiveType, parse_stop_rule

console = Console(stderr=True)


def collect(  # noqa: PLR0913
    trial: str = typer.Option(..., "--trial", "-t", help="Trial name"),
    path: Path = typer.Option(..., "--path", help="Metrics file path"),
    metric_names: str = typer.Option(
        ...,
        "--metric-names", "-m",
        help="Metric names separated by ';', the first one is the objective",
    ),
    objective_type: str = typer.Option(
        "maximize",
        "--objective-type", "-o",
        help="Objective type: maximize or minimize",
    ),
    db_manager_url: str = typer.Option(
        ...,
        "--db-manager-url",
        envvar=DB_MANAGER_URL_ENV,
        help="Observation service endpoint (e.g., http://db-manager:6789)",
    ),
    early_stop_url: Optional[str] = typer.Option(
        None,
        "--early-stop-url",
        envvar=EARLY_STOP_URL_ENV,
        help="Early stopping service endpoint (defaults to the observation service)",
    ),
    filters: Optional[str] = typer.Option(
        None,
        "--filters", "-f",
        help="Metric filters separated by ';', each with name and value groups",
    ),
    stop_rules: Optional[list[str]] = typer.Option(
        None,
        "--stop-rule",
        help="Early stopping rule 'name;value;comparison;start_step' (repeatable)",
    ),
    pids: Optional[list[int]] = typer.Option(
        None,
        "--pid",
        help="Main process to supervise (repeatable, the first is the training process; discovered from the metrics file if omitted)",
    ),
    poll_interval: Optional[float] = typer.Option(
        None,
        "--poll-interval", "-p",
        help="Seconds between running processes checks",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds before giving up on the running processes check (0 = never)",
    ),
    wait_all: Optional[bool] = typer.Option(
        None,
        "--wait-all/--wait-any",
        help="Wait for all main processes or only the first one",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        help="YAML config file (defaults to $METRICWATCH_CONFIG)",
    ),
    strict: Optional[bool] = typer.Option(
        None,
        "--strict/--no-strict",
        help="Exit with code 1 if reporting fails",
    ),
) -> None:
    """
    Collect metrics from a trial's log file and report them.

    With --stop-rule, the log is parsed while the trial runs and the
    training process is terminated once every rule is reached.

    Examples:

        metricwatch collect -t trial-1 --path /var/log/train/metrics.log \\
            -m "accuracy;loss" --db-manager-url http://db-manager:6789

        metricwatch collect -t trial-1 --path /var/log/train/metrics.log \\
            -m "accuracy;loss" --db-manager-url http://db-manager:6789 \\
            --stop-rule "loss;0.1;less;2" --stop-rule "accuracy;0.9;greater;0"
    """
    config = load_config(config_file)
    if poll_interval is not None:
        config.poll_interval = poll_interval
    if timeout is not None:
        config.timeout = timeout
    if wait_all is not None:
        config.wait_all_processes = wait_all
    if strict is not None:
        config.strict = strict

    names = split_list(metric_names)
    if not names:
        raise typer.BadParameter("at least one metric name is required", param_hint="--metric-names")

    try:
        objective = ObjectiveType.parse(objective_type)
    except ParseError as e:
        raise typer.BadParameter(str(e), param_hint="--objective-type") from e

    try:
        rules = [parse_stop_rule(rule) for rule in stop_rules or []]
    except ParseError as e:
        raise typer.BadParameter(str(e), param_hint="--stop-rule") from e

    db_client = ReportingClient(
        db_manager_url,
        timeout=config.request_timeout,
        retry_attempts=config.retry_attempts,
        retry_backoff=config.retry_backoff,
        retry_backoff_factor=config.retry_backoff_factor,
    )
    early_stop_client = None
    if early_stop_url:
        early_stop_client = ReportingClient(
            early_stop_url,
            timeout=config.request_timeout,
            retry_attempts=config.retry_attempts,
            retry_backoff=config.retry_backoff,
            retry_backoff_factor=config.retry_backoff_factor,
        )

    try:
        try:
            collector = MetricsCollector(
                trial_name=trial,
                metrics_file=path,
                metric_names=names,
                objective_type=objective,
                db_client=db_client,
                config=config,
                stop_rules=rules,
                filters=split_filters(filters),
                early_stop_client=early_stop_client,
                main_pids=pids or None,
            )
        except ParseError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from e

        result = collector.run()
    finally:
        db_client.close()
        if early_stop_client is not None:
            early_stop_client.close()

    outcome = result.outcome.value if result.outcome else "unknown"
    if result.ok:
        console.print(f"[green]Trial {trial} {outcome}, metrics reported[/green]")
        return

    console.print(f"[yellow]Trial {trial} {outcome}, reporting failed:[/yellow]")
    for error in result.errors:
        console.print(f"  - {error}")
    if config.strict:
        raise typer.Exit(1)
