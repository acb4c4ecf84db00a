# Copyright (c) Syntropy Systems
"""Pydantic models for observation logs."""

from __future__ import annotations

from pydantic import Field

from .base import MetricWatchBaseModel


class Metric(MetricWatchBaseModel):
    """A named metric value.

    The value is kept as a string, as persisted, so non-numeric
    sentinels such as ``unavailable`` survive the round trip.
    """

    name: str
    value: str


class MetricLog(MetricWatchBaseModel):
    """A metric reading at a point in time."""

    time_stamp: str = ""
    metric: Metric


class ObservationLog(MetricWatchBaseModel):
    """Ordered metric readings for one trial."""

    metric_logs: list[MetricLog] = Field(default_factory=list)

    def metric_names(self) -> set[str]:
        """Return the distinct metric names in the log."""
        return {log.metric.name for log in self.metric_logs}

    def values_for(self, name: str) -> list[str]:
        """Return the values recorded for a metric, in log order."""
        return [log.metric.value for log in self.metric_logs if log.metric.name == name]
