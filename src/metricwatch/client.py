# Copyright (c) Syntropy Systems
"""HTTP client for reporting observations and trial status."""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, TypeVar, overload

import httpx
from pydantic import BaseModel, ValidationError
from typing_extensions import Self

from metricwatch.errors import TransportError
from metricwatch.models.api import (
    ErrorResponse,
    GetObservationLogReply,
    HealthResponse,
    MessageResponse,
    TrialStatusResponse,
)
from metricwatch.models.observation import ObservationLog

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from types import TracebackType

logger = logging.getLogger(__name__)

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)

TRIAL_EARLY_STOPPED = "early-stopped"
SERVER_ERROR_STATUS = 500


class ReportingClient:
    """HTTP client for the observation and early stopping services.

    Requests are retried with exponential backoff on connection errors
    and 5xx responses. Client errors (4xx) are not retried.
    """

    server_url: str
    timeout: float
    retry_attempts: int
    retry_backoff: float
    retry_backoff_factor: float
    _client: httpx.Client
    _sleep: Callable[[float], None]

    def __init__(  # noqa: PLR0913
        self,
        server_url: str,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_backoff: float = 0.5,
        retry_backoff_factor: float = 2.0,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the client.

        Args:
            server_url: Base URL of the service (e.g., "http://db-manager:6789")
            timeout: Per-request timeout in seconds
            retry_attempts: Total attempts per request, at least 1
            retry_backoff: Delay before the first retry in seconds
            retry_backoff_factor: Multiplier applied to the delay after each retry
            http_client: Preconfigured httpx client (mainly for tests)
            sleep: Sleep function used between retries

        """
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff = retry_backoff
        self.retry_backoff_factor = retry_backoff_factor
        self._client = http_client or httpx.Client(timeout=timeout)
        self._sleep = sleep

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> Self:
        """Enter the client context and return self."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit the client context and close the HTTP client."""
        self.close()

    @overload
    def _request(
        self,
        method: str,
        path: str,
        json: Mapping[str, object] | None = None,
        params: Mapping[str, object] | None = None,
        *,
        response_model: type[ResponseModel],
    ) -> ResponseModel:
        ...

    @overload
    def _request(
        self,
        method: str,
        path: str,
        json: Mapping[str, object] | None = None,
        params: Mapping[str, object] | None = None,
        *,
        response_model: None = None,
    ) -> object:
        ...

    def _request(
        self,
        method: str,
        path: str,
        json: Mapping[str, object] | None = None,
        params: Mapping[str, object] | None = None,
        *,
        response_model: type[ResponseModel] | None = None,
    ) -> ResponseModel | object:
        """Make an HTTP request to the server, retrying transient failures."""
        url = f"{self.server_url}{path}"
        delay = self.retry_backoff

        for attempt in range(1, self.retry_attempts + 1):
            try:
                return self._send(method, url, json, params, response_model)
            except TransportError as e:
                retryable = e.status_code is None or e.status_code >= SERVER_ERROR_STATUS
                if not retryable or attempt == self.retry_attempts:
                    raise
                logger.warning(
                    "%s %s failed (attempt %d/%d): %s, retrying in %.1fs",
                    method,
                    path,
                    attempt,
                    self.retry_attempts,
                    e,
                    delay,
                )
                self._sleep(delay)
                delay *= self.retry_backoff_factor

        msg = f"{method} {path} was not attempted"
        raise TransportError(msg)

    def _send(
        self,
        method: str,
        url: str,
        json: Mapping[str, object] | None,
        params: Mapping[str, object] | None,
        response_model: type[ResponseModel] | None,
    ) -> ResponseModel | object:
        try:
            response = self._client.request(
                method=method,
                url=url,
                json=json,
                params=params,
                timeout=self.timeout,
            )
            _ = response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            # Try to get error detail from response
            try:
                detail = ErrorResponse.model_validate(e.response.json()).detail
            except (ValidationError, ValueError):
                detail = str(e)
            msg = f"Server error: {detail}"
            raise TransportError(msg, status_code=e.response.status_code) from e
        except httpx.RequestError as e:
            msg = f"Connection error: {e}"
            raise TransportError(msg) from e

        if response_model is None:
            return data
        try:
            return response_model.model_validate(data)
        except ValidationError as e:
            msg = f"Unexpected response from {url}: {e}"
            raise TransportError(msg) from e

    # --- Observation Operations ---

    def report_observation_log(
        self,
        trial_name: str,
        observation_log: ObservationLog,
    ) -> MessageResponse:
        """Store the observation log of a trial.

        Args:
            trial_name: Trial name
            observation_log: Collected metric logs

        Returns:
            Confirmation message

        """
        return self._request(
            "POST",
            "/api/v1/observations",
            json={
                "trial_name": trial_name,
                "observation_log": observation_log.model_dump(),
            },
            response_model=MessageResponse,
        )

    def get_observation_log(
        self,
        trial_name: str,
        metric_name: str | None = None,
        start_time: str | None = None,
        end_time: str | None = None,
    ) -> ObservationLog:
        """Get the observation log of a trial.

        Args:
            trial_name: Trial name
            metric_name: Only return this metric
            start_time: Inclusive RFC3339 lower bound
            end_time: Inclusive RFC3339 upper bound

        Returns:
            Observation log ordered by time

        """
        params: dict[str, str] = {}
        if metric_name:
            params["metric_name"] = metric_name
        if start_time:
            params["start_time"] = start_time
        if end_time:
            params["end_time"] = end_time

        result = self._request(
            "GET",
            f"/api/v1/observations/{trial_name}",
            params=params,
            response_model=GetObservationLogReply,
        )
        return result.observation_log

    def delete_observation_log(self, trial_name: str) -> MessageResponse:
        """Delete the observation log of a trial."""
        return self._request(
            "DELETE",
            f"/api/v1/observations/{trial_name}",
            response_model=MessageResponse,
        )

    # --- Trial Status Operations ---

    def set_trial_status(
        self,
        trial_name: str,
        status: str = TRIAL_EARLY_STOPPED,
    ) -> TrialStatusResponse:
        """Update the status of a trial (early stopped by default)."""
        return self._request(
            "POST",
            f"/api/v1/trials/{trial_name}/status",
            json={"status": status},
            response_model=TrialStatusResponse,
        )

    def get_trial_status(self, trial_name: str) -> TrialStatusResponse:
        """Get the recorded status of a trial."""
        return self._request(
            "GET",
            f"/api/v1/trials/{trial_name}/status",
            response_model=TrialStatusResponse,
        )

    def health(self) -> HealthResponse:
        """Check that the service and its store are reachable."""
        return self._request("GET", "/api/v1/health", response_model=HealthResponse)
