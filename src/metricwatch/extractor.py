# Copyright (c) Syntropy Systems
"""Metric extraction from training log lines.

Training code prints metrics as ``name=value`` pairs, for example::

    epoch 1:
    batch1 loss=0.8
    F1=0.4

Each filter is a regular expression with two groups, the metric name
and the metric value. Lines may start with an RFC3339 timestamp, which
is used as the observation time.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from metricwatch.errors import ParseError
from metricwatch.models.observation import Metric, MetricLog, ObservationLog
from metricwatch.timestamps import format_rfc3339, parse_rfc3339, utcnow

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_FILTER = r"([\w|-]+)\s*=\s*([+-]?\d*(\.\d+)?([Ee][+-]?\d+)?)"
FILTER_SEPARATOR = ";"

# Reported for the objective metric when the trial never printed it
UNAVAILABLE_METRIC_VALUE = "unavailable"

MIN_FILTER_GROUPS = 2


@dataclass(frozen=True)
class MetricObservation:
    """A metric value extracted from a log line."""

    name: str
    value: float
    raw: str
    timestamp: str | None = None


def split_filters(text: str | None) -> list[str]:
    """Split a ``;``-separated filter list, dropping empty entries."""
    if not text:
        return []
    return [f for f in text.split(FILTER_SEPARATOR) if f]


def compile_filters(filters: Iterable[str] | None) -> list[re.Pattern[str]]:
    """Compile metric filters, falling back to the default ``name=value`` filter."""
    patterns = list(filters or [])
    if not patterns:
        patterns = [DEFAULT_FILTER]

    compiled: list[re.Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            msg = f"Invalid metric filter {pattern!r}: {e}"
            raise ParseError(msg) from e
    return compiled


def line_timestamp(line: str) -> str | None:
    """Return the RFC3339 timestamp a line starts with, if any."""
    head = line.split(maxsplit=1)
    if not head:
        return None
    try:
        return format_rfc3339(parse_rfc3339(head[0]))
    except ParseError:
        return None


class MetricExtractor:
    """Applies an ordered list of metric filters to log lines."""

    patterns: list[re.Pattern[str]]

    def __init__(self, filters: Iterable[str] | None = None) -> None:
        self.patterns = compile_filters(filters)

    def extract(self, line: str, timestamp: str | None = None) -> list[MetricObservation]:
        """Extract every metric found in a line, in filter order."""
        if timestamp is None:
            timestamp = line_timestamp(line)

        observations: list[MetricObservation] = []
        for pattern in self.patterns:
            if pattern.groups < MIN_FILTER_GROUPS:
                continue
            for match in pattern.finditer(line):
                name_group, value_group = match.group(1), match.group(2)
                if name_group is None or value_group is None:
                    continue
                name = name_group.strip()
                raw = value_group.strip()
                try:
                    value = float(raw)
                except ValueError:
                    logger.warning("Unable to parse value %r to float for metric %s", raw, name)
                    continue
                observations.append(
                    MetricObservation(name=name, value=value, raw=raw, timestamp=timestamp)
                )
        return observations


def _read_lines(metrics_file: Path) -> list[str]:
    try:
        with metrics_file.open(errors="replace") as f:
            lines = [line.strip() for line in f]
    except FileNotFoundError:
        logger.warning("Metrics file %s does not exist, no metrics were reported", metrics_file)
        return []
    return [line for line in lines if line]


def collect_observation_log(
    metrics_file: Path,
    metric_names: list[str],
    filters: Iterable[str] | None = None,
) -> ObservationLog:
    """Build the observation log of a trial from its whole log file.

    Only metrics listed in ``metric_names`` are kept (all metrics when the
    list is empty). The first name is the objective metric; if it was never
    reported, a single ``unavailable`` entry is added for it. A metrics file
    that was never created counts as empty.
    """
    extractor = MetricExtractor(filters)
    wanted = set(metric_names)
    metric_logs: list[MetricLog] = []

    for line in _read_lines(metrics_file):
        timestamp = line_timestamp(line) or utcnow()
        for observation in extractor.extract(line, timestamp=timestamp):
            if wanted and observation.name not in wanted:
                continue
            metric_logs.append(
                MetricLog(
                    time_stamp=timestamp,
                    metric=Metric(name=observation.name, value=observation.raw),
                )
            )

    if metric_names:
        objective = metric_names[0]
        if not any(log.metric.name == objective for log in metric_logs):
            metric_logs.append(
                MetricLog(
                    time_stamp=utcnow(),
                    metric=Metric(name=objective, value=UNAVAILABLE_METRIC_VALUE),
                )
            )

    return ObservationLog(metric_logs=metric_logs)
