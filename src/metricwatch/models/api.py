# Copyright (c) Syntropy Systems
"""Pydantic models for metricwatch API requests and responses."""

from __future__ import annotations

from pydantic import Field

from .base import MetricWatchBaseModel
from .observation import ObservationLog


class ReportObservationLogRequest(MetricWatchBaseModel):
    """Request to store the observation log of a trial."""

    trial_name: str = Field(min_length=1)
    observation_log: ObservationLog = Field(default_factory=ObservationLog)


class GetObservationLogReply(MetricWatchBaseModel):
    """Response containing a trial's observation log."""

    trial_name: str
    observation_log: ObservationLog
    count: int


class SetTrialStatusRequest(MetricWatchBaseModel):
    """Request to change a trial's status."""

    status: str = "early-stopped"


class TrialStatusResponse(MetricWatchBaseModel):
    """Trial status response."""

    trial_name: str
    status: str
    updated_at: str | None = None


class MessageResponse(MetricWatchBaseModel):
    """Generic message response."""

    message: str
    success: bool = True


class ErrorResponse(MetricWatchBaseModel):
    """Error response."""

    detail: str
    error_code: str | None = None


class HealthResponse(MetricWatchBaseModel):
    """Health check response."""

    status: str

