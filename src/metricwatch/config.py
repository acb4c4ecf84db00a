# Copyright (c) Syntropy Systems
"""Configuration management for metricwatch."""
from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import cast

import yaml

CONFIG_ENV = "METRICWATCH_CONFIG"
DB_MANAGER_URL_ENV = "METRICWATCH_DB_MANAGER_URL"
EARLY_STOP_URL_ENV = "METRICWATCH_EARLY_STOP_URL"

LIST_SEPARATOR = ";"


@dataclass
class MetricWatchConfig:
    """Configuration for the metrics collector."""

    # Poll interval between running processes checks (seconds)
    poll_interval: float = 1.0

    # Timeout for the running processes check, 0 waits forever (seconds)
    timeout: float = 0.0

    # Wait for all main processes to exit instead of the first one
    wait_all_processes: bool = True

    # Time allowed for the main process to exit after early stopping (seconds)
    early_stop_timeout: float = 60.0

    # Initial and maximum delay while waiting for the metrics file (seconds)
    file_poll_interval: float = 0.5
    file_poll_max_interval: float = 5.0

    # Per-request timeout for service calls (seconds)
    request_timeout: float = 10.0

    # Attempts per service call and backoff between attempts
    retry_attempts: int = 3
    retry_backoff: float = 0.5
    retry_backoff_factor: float = 2.0

    # Exit non-zero when reporting fails
    strict: bool = False


def _coerce(current: object, value: object) -> object | None:
    """Return ``value`` converted to the type of ``current``, or None if it doesn't fit."""
    if isinstance(current, bool):
        return value if isinstance(value, bool) else None
    if isinstance(current, int):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return None
    if isinstance(current, float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        return None
    return None


def load_config(config_path: Path | None = None) -> MetricWatchConfig:
    """Load configuration from a YAML file or defaults.

    Looks for config in:
    1. Provided config_path
    2. $METRICWATCH_CONFIG
    3. Defaults

    Keys with a value of the wrong type are ignored.
    """
    config = MetricWatchConfig()

    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV)
        if env_path:
            config_path = Path(env_path)

    if config_path is None or not config_path.exists():
        return config

    with config_path.open() as f:
        data = cast("dict[str, object]", yaml.safe_load(f) or {})

    for field in fields(config):
        if field.name not in data:
            continue
        value = _coerce(getattr(config, field.name), data[field.name])
        if value is not None:
            setattr(config, field.name, value)

    return config


def split_list(text: str | None) -> list[str]:
    """Split a ``;``-separated option value, dropping empty entries."""
    if not text:
        return []
    return [item.strip() for item in text.split(LIST_SEPARATOR) if item.strip()]
