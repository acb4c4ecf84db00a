# Copyright (c) Syntropy Systems
"""Pytest fixtures for metricwatch tests."""

import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from metricwatch.config import MetricWatchConfig
from metricwatch.models.observation import Metric, MetricLog, ObservationLog
from metricwatch.store import SQLiteObservationStore


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_dir: Path) -> Generator[SQLiteObservationStore, None, None]:
    """An initialized SQLite observation store."""
    db = SQLiteObservationStore(temp_dir / "metricwatch.db", connect_timeout=0)
    db.init_schema()
    yield db
    db.close()


@pytest.fixture
def fast_config() -> MetricWatchConfig:
    """Collector config with short intervals and no retries."""
    return MetricWatchConfig(
        poll_interval=0.01,
        early_stop_timeout=2.0,
        file_poll_interval=0.01,
        file_poll_max_interval=0.05,
        request_timeout=1.0,
        retry_attempts=1,
    )


def make_log(*entries: tuple[str, str, str]) -> ObservationLog:
    """Build an observation log from (time_stamp, name, value) tuples."""
    return ObservationLog(
        metric_logs=[
            MetricLog(time_stamp=ts, metric=Metric(name=name, value=value))
            for ts, name, value in entries
        ]
    )
