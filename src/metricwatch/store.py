# Copyright (c) Syntropy Systems
"""Observation log storage with a SQLite implementation."""
from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from metricwatch.errors import ParseError, StoreError
from metricwatch.models.observation import Metric, MetricLog, ObservationLog
from metricwatch.timestamps import from_sql_time, to_sql_time, utcnow

logger = logging.getLogger(__name__)

DB_PATH_ENV = "METRICWATCH_DB_PATH"

CONNECT_INTERVAL = 5.0
CONNECT_TIMEOUT = 60.0

# SQL schema for the observation store
SCHEMA = """
-- One row per reported metric value
CREATE TABLE IF NOT EXISTS observation_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    trial_name TEXT NOT NULL,
    time TEXT,               -- UTC, 'YYYY-MM-DD HH:MM:SS.ffffff'
    metric_name TEXT NOT NULL,
    value TEXT NOT NULL      -- parsed by readers that need numbers
);

-- Latest status reported for a trial
CREATE TABLE IF NOT EXISTS trial_statuses (
    trial_name TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_observation_logs_trial ON observation_logs(trial_name, time);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """
    Get a database connection with proper settings for concurrent access.

    - isolation_level=None for explicit transaction control
    - WAL mode for concurrent readers/writers
    - busy_timeout to wait for locks instead of failing immediately
    - Row factory for dict-like access
    """
    conn = sqlite3.connect(
        str(db_path),
        timeout=5.0,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.row_factory = sqlite3.Row
    return conn


def open_connection(
    db_path: Path,
    interval: float = CONNECT_INTERVAL,
    timeout: float = CONNECT_TIMEOUT,
) -> sqlite3.Connection:
    """Open a connection, retrying every ``interval`` until ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            conn = get_connection(db_path)
            conn.execute("SELECT 1")
        except sqlite3.Error as e:
            logger.info("Open connection to %s failed: %s", db_path, e)
        else:
            return conn

        if time.monotonic() + interval > deadline:
            msg = f"Timeout waiting for connection to {db_path}"
            raise StoreError(msg)
        time.sleep(interval)


class ObservationStore(ABC):
    """Storage contract for trial observation logs."""

    @abstractmethod
    def init_schema(self) -> None:
        """Create tables if they do not exist."""

    @abstractmethod
    def ping(self) -> None:
        """Probe the store, raising StoreError if unreachable."""

    @abstractmethod
    def register_observation_log(self, trial_name: str, observation_log: ObservationLog) -> int:
        """Store all observations of a trial. Returns the number of rows inserted."""

    @abstractmethod
    def get_observation_log(
        self,
        trial_name: str,
        metric_name: Optional[str] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
    ) -> ObservationLog:
        """Get a trial's observations ordered by time."""

    @abstractmethod
    def delete_observation_log(self, trial_name: str) -> None:
        """Delete all observations of a trial."""

    @abstractmethod
    def set_trial_status(self, trial_name: str, status: str) -> str:
        """Record a trial status. Returns the update time."""

    @abstractmethod
    def get_trial_status(self, trial_name: str) -> Optional[dict]:
        """Get the recorded status of a trial, if any."""

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""


class SQLiteObservationStore(ObservationStore):
    """SQLite-backed observation store."""

    def __init__(
        self,
        db_path: Path,
        connect_interval: float = CONNECT_INTERVAL,
        connect_timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        self.db_path = Path(db_path)
        self.conn = open_connection(self.db_path, connect_interval, connect_timeout)
        self._lock = threading.Lock()

    def init_schema(self) -> None:
        logger.debug("Initializing observation store schema in %s", self.db_path)
        with self._lock:
            try:
                self.conn.executescript(SCHEMA)
            except sqlite3.Error as e:
                msg = f"Error creating schema: {e}"
                raise StoreError(msg) from e

    def ping(self) -> None:
        with self._lock:
            try:
                self.conn.execute("SELECT 1")
            except sqlite3.Error as e:
                msg = f"Error `SELECT 1` probing: {e}"
                raise StoreError(msg) from e

    def register_observation_log(self, trial_name: str, observation_log: ObservationLog) -> int:
        rows = []
        for log in observation_log.metric_logs:
            if not log.time_stamp:
                continue
            rows.append((trial_name, to_sql_time(log.time_stamp), log.metric.name, log.metric.value))

        if not rows:
            return 0

        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
                self.conn.executemany(
                    """
                    INSERT INTO observation_logs (trial_name, time, metric_name, value)
                    VALUES (?, ?, ?, ?)
                    """,
                    rows,
                )
                self.conn.execute("COMMIT")
            except sqlite3.Error as e:
                if self.conn.in_transaction:
                    self.conn.execute("ROLLBACK")
                msg = f"Execute SQL INSERT failed: {e}"
                raise StoreError(msg) from e

        return len(rows)

    def get_observation_log(
        self,
        trial_name: str,
        metric_name: Optional[str] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
    ) -> ObservationLog:
        query = "SELECT time, metric_name, value FROM observation_logs WHERE trial_name = ?"
        params: list[Any] = [trial_name]

        if metric_name:
            query += " AND metric_name = ?"
            params.append(metric_name)

        if start_time:
            query += " AND time >= ?"
            params.append(to_sql_time(start_time))

        if end_time:
            query += " AND time <= ?"
            params.append(to_sql_time(end_time))

        query += " ORDER BY time, id"

        with self._lock:
            try:
                rows = self.conn.execute(query, params).fetchall()
            except sqlite3.Error as e:
                msg = f"Failed to get observation logs: {e}"
                raise StoreError(msg) from e

        metric_logs = []
        for row in rows:
            try:
                time_stamp = from_sql_time(row["time"])
            except ParseError as e:
                logger.info("Error parsing time %s: %s", row["time"], e)
                continue
            metric_logs.append(
                MetricLog(
                    time_stamp=time_stamp,
                    metric=Metric(name=row["metric_name"], value=row["value"]),
                )
            )
        return ObservationLog(metric_logs=metric_logs)

    def delete_observation_log(self, trial_name: str) -> None:
        with self._lock:
            try:
                self.conn.execute(
                    "DELETE FROM observation_logs WHERE trial_name = ?",
                    (trial_name,),
                )
            except sqlite3.Error as e:
                msg = f"Failed to delete observation logs: {e}"
                raise StoreError(msg) from e

    def set_trial_status(self, trial_name: str, status: str) -> str:
        now = utcnow()
        with self._lock:
            try:
                self.conn.execute(
                    """
                    INSERT INTO trial_statuses (trial_name, status, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(trial_name) DO UPDATE SET
                        status = excluded.status,
                        updated_at = excluded.updated_at
                    """,
                    (trial_name, status, now),
                )
            except sqlite3.Error as e:
                msg = f"Failed to set trial status: {e}"
                raise StoreError(msg) from e
        return now

    def get_trial_status(self, trial_name: str) -> Optional[dict]:
        with self._lock:
            try:
                row = self.conn.execute(
                    "SELECT trial_name, status, updated_at FROM trial_statuses WHERE trial_name = ?",
                    (trial_name,),
                ).fetchone()
            except sqlite3.Error as e:
                msg = f"Failed to get trial status: {e}"
                raise StoreError(msg) from e

        if row is None:
            return None
        return dict(row)

    def close(self) -> None:
        with self._lock:
            self.conn.close()


def get_store(db_path: Optional[Path] = None) -> ObservationStore:
    """Open the store at ``db_path`` or ``$METRICWATCH_DB_PATH`` and initialize it."""
    if db_path is None:
        env_path = os.environ.get(DB_PATH_ENV)
        if not env_path:
            msg = f"No database path provided and {DB_PATH_ENV} is not set"
            raise StoreError(msg)
        db_path = Path(env_path)

    store = SQLiteObservationStore(db_path)
    store.init_schema()
    return store
