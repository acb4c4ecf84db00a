# Copyright (c) Syntropy Systems
"""metricwatch server module serving observation logs over HTTP."""

from .app import create_app

__all__ = ["create_app"]
