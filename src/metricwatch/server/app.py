"""FastAPI application serving observation logs and trial status."""

import logging
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from ..errors import ParseError, StoreError
from ..models.api import (
    ErrorResponse,
    GetObservationLogReply,
    HealthResponse,
    MessageResponse,
    ReportObservationLogRequest,
    SetTrialStatusRequest,
    TrialStatusResponse,
)
from ..store import ObservationStore, get_store as open_store

logger = logging.getLogger(__name__)

# Global store instance
_store: Optional[ObservationStore] = None

TRIAL_STATUSES = ("running", "completed", "early-stopped", "failed")


def get_store() -> ObservationStore:
    """Get the store instance."""
    if _store is None:
        raise RuntimeError("Store not initialized")
    return _store


def create_app(
    store: Optional[ObservationStore] = None,
    db_path: Optional[Path] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        store: Store to serve (takes precedence over db_path)
        db_path: SQLite database path; falls back to $METRICWATCH_DB_PATH

    Returns:
        Configured FastAPI application
    """
    global _store

    if store is None:
        store = open_store(db_path)
    else:
        store.init_schema()
    _store = store

    app = FastAPI(
        title="metricwatch server",
        description="Observation log and trial status service",
        version="0.1.0",
    )

    @app.exception_handler(ParseError)
    async def parse_error_handler(request: Request, exc: ParseError):
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(detail=str(exc), error_code="parse_error").model_dump(),
        )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error("Store error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(detail=str(exc), error_code="store_error").model_dump(),
        )

    # --- Observation Endpoints ---

    @app.post("/api/v1/observations", response_model=MessageResponse)
    def report_observation_log(
        request: ReportObservationLogRequest,
        store: ObservationStore = Depends(get_store),
    ):
        """Store the observation log of a trial."""
        count = store.register_observation_log(request.trial_name, request.observation_log)
        logger.info("Stored %d observations for trial %s", count, request.trial_name)
        return MessageResponse(message=f"Stored {count} observations for {request.trial_name}")

    @app.get("/api/v1/observations/{trial_name}", response_model=GetObservationLogReply)
    def get_observation_log(
        trial_name: str,
        metric_name: Optional[str] = Query(None, description="Only return this metric"),
        start_time: Optional[str] = Query(None, description="Inclusive RFC3339 lower bound"),
        end_time: Optional[str] = Query(None, description="Inclusive RFC3339 upper bound"),
        store: ObservationStore = Depends(get_store),
    ):
        """Get the observation log of a trial, ordered by time."""
        log = store.get_observation_log(trial_name, metric_name, start_time, end_time)
        return GetObservationLogReply(
            trial_name=trial_name,
            observation_log=log,
            count=len(log.metric_logs),
        )

    @app.delete("/api/v1/observations/{trial_name}", response_model=MessageResponse)
    def delete_observation_log(trial_name: str, store: ObservationStore = Depends(get_store)):
        """Delete the observation log of a trial."""
        store.delete_observation_log(trial_name)
        return MessageResponse(message=f"Observations for {trial_name} deleted")

    # --- Trial Status Endpoints ---

    @app.post("/api/v1/trials/{trial_name}/status", response_model=TrialStatusResponse)
    def set_trial_status(
        trial_name: str,
        request: SetTrialStatusRequest,
        store: ObservationStore = Depends(get_store),
    ):
        """Update the status of a trial."""
        if request.status not in TRIAL_STATUSES:
            raise HTTPException(
                status_code=400,
                detail=f"Unknown status {request.status!r}, expected one of {', '.join(TRIAL_STATUSES)}",
            )
        updated_at = store.set_trial_status(trial_name, request.status)
        logger.info("Trial %s status set to %s", trial_name, request.status)
        return TrialStatusResponse(
            trial_name=trial_name,
            status=request.status,
            updated_at=updated_at,
        )

    @app.get("/api/v1/trials/{trial_name}/status", response_model=TrialStatusResponse)
    def get_trial_status(trial_name: str, store: ObservationStore = Depends(get_store)):
        """Get the recorded status of a trial."""
        record = store.get_trial_status(trial_name)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Trial {trial_name} has no status")
        return TrialStatusResponse(**record)

    # --- Health ---

    @app.get("/api/v1/health", response_model=HealthResponse)
    def health(store: ObservationStore = Depends(get_store)):
        """Check that the store is reachable."""
        store.ping()
        return HealthResponse(status="ok")

    return app
