# Copyright (c) Syntropy Systems
"""Pydantic models shared by the collector, client and server."""

from .observation import Metric, MetricLog, ObservationLog

__all__ = ["Metric", "MetricLog", "ObservationLog"]
