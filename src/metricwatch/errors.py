# Copyright (c) Syntropy Systems
"""Error types raised by metricwatch."""
from __future__ import annotations


class MetricWatchError(Exception):
    """Base class for metricwatch errors."""


class ParseError(MetricWatchError):
    """Malformed metric value, timestamp or rule definition."""


class ProcessError(MetricWatchError):
    """Process lookup, termination or wait failure."""


class TransportError(MetricWatchError):
    """Error talking to a metricwatch service."""

    status_code: int | None

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreError(MetricWatchError):
    """Observation store connection or query failure."""
