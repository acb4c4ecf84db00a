# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for metricwatch."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict


class MetricWatchBaseModel(BaseModel):
    """Base model with shared config for metricwatch schemas."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )
