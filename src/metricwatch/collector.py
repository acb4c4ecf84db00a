# Copyright (c) Syntropy Systems
"""Metrics collector: watches a trial's log and reports its observations.

Two flows run side by side. A background thread follows the metrics
file and feeds the early stopping engine; the calling thread waits for
the main processes to exit. Whichever flow finishes the trial first
claims the ``ReportGuard`` and is the only one to report.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from metricwatch.engine import EarlyStoppingEngine, TriggerDecision
from metricwatch.errors import MetricWatchError, ProcessError, TransportError
from metricwatch.extractor import MetricExtractor, collect_observation_log
from metricwatch.process import ProcessController, ProcessMark, read_mark, write_mark
from metricwatch.tail import follow, wait_for_file

if TYPE_CHECKING:
    from pathlib import Path

    from metricwatch.client import ReportingClient
    from metricwatch.config import MetricWatchConfig
    from metricwatch.rules import ObjectiveType, StoppingRule

logger = logging.getLogger(__name__)

THREAD_JOIN_TIMEOUT = 5.0


class TrialOutcome(str, Enum):
    """How the trial ended, from the collector's point of view."""

    EARLY_STOPPED = "early-stopped"
    COMPLETED = "completed"


class ReportGuard:
    """Single-assignment cell deciding which flow reports.

    ``claim`` returns True for exactly one caller. The winner sets
    ``done`` once its reporting is finished.
    """

    _lock: threading.Lock
    _outcome: TrialOutcome | None
    done: threading.Event

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._outcome = None
        self.done = threading.Event()

    def claim(self, outcome: TrialOutcome) -> bool:
        with self._lock:
            if self._outcome is not None:
                return False
            self._outcome = outcome
            return True

    @property
    def outcome(self) -> TrialOutcome | None:
        return self._outcome


@dataclass
class CollectorResult:
    """Outcome of a collector run."""

    outcome: TrialOutcome | None = None
    reported: bool = False
    status_updated: bool | None = None
    main_mark: ProcessMark | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when the report (and status update, if any) went through."""
        return self.reported and self.status_updated is not False


class MetricsCollector:
    """Collects a trial's metrics and applies early stopping."""

    def __init__(  # noqa: PLR0913
        self,
        trial_name: str,
        metrics_file: Path,
        metric_names: list[str],
        objective_type: ObjectiveType,
        db_client: ReportingClient,
        config: MetricWatchConfig,
        stop_rules: list[StoppingRule] | None = None,
        filters: list[str] | None = None,
        early_stop_client: ReportingClient | None = None,
        processes: ProcessController | None = None,
        main_pids: list[int] | None = None,
    ) -> None:
        """Initialize the collector.

        Args:
            trial_name: Name of the trial being monitored
            metrics_file: Log file the training process writes metrics to
            metric_names: Metrics to report, the first one is the objective
            objective_type: Optimization direction of the objective
            db_client: Client for reporting the observation log
            config: Polling, timeout and retry settings
            stop_rules: Early stopping rules; none disables early stopping
            filters: Metric filters (default ``name=value`` filter if empty)
            early_stop_client: Client for updating the trial status
            processes: Process controller (psutil-backed by default)
            main_pids: Main processes to supervise, the first one being the
                training process (discovered from the metrics file if None)

        Raises:
            ParseError: If a filter or rule threshold is invalid

        """
        if not metric_names:
            msg = "At least one metric name (the objective) is required"
            raise ValueError(msg)

        self.trial_name = trial_name
        self.metrics_file = metrics_file
        self.mark_dir = metrics_file.parent
        self.metric_names = metric_names
        self.filters = filters or []
        self.db_client = db_client
        self.early_stop_client = early_stop_client or db_client
        self.config = config
        self.processes = processes or ProcessController()
        self.main_pids = list(main_pids) if main_pids is not None else None

        self.engine: EarlyStoppingEngine | None = None
        if stop_rules:
            self.engine = EarlyStoppingEngine(
                stop_rules,
                objective_metric=metric_names[0],
                objective_type=objective_type,
                extractor=MetricExtractor(self.filters),
            )

        self.guard = ReportGuard()
        self.result = CollectorResult()
        self._stop_event = threading.Event()
        self._watcher: threading.Thread | None = None

    def run(self) -> CollectorResult:
        """Watch the trial until it ends and report its observations once."""
        logger.info("Trial name: %s", self.trial_name)

        pids, main_pid = self._resolve_main_pids()

        self._watcher = threading.Thread(target=self._watch, args=(main_pid,), daemon=True)
        self._watcher.start()

        try:
            self.processes.wait_for_exit(
                pids,
                poll_interval=self.config.poll_interval,
                timeout=self.config.timeout,
                wait_all=self.config.wait_all_processes,
            )
        except ProcessError as e:
            logger.error("Failed to wait for worker container: %s", e)

        if main_pid is not None:
            self._check_mark(main_pid)

        if self.guard.claim(TrialOutcome.COMPLETED):
            try:
                self.result.outcome = TrialOutcome.COMPLETED
                self._report()
            finally:
                self.guard.done.set()
        else:
            # Early stopping owns the report, let it finish
            finished = self.guard.done.wait(
                timeout=self.config.early_stop_timeout + self._report_budget()
            )
            if not finished:
                logger.error("Early stopping did not finish reporting in time")
                self.result.errors.append("early stopping report timed out")

        self.stop()
        return self.result

    def stop(self) -> None:
        """Stop following the metrics file."""
        self._stop_event.set()
        if self._watcher is not None and self._watcher is not threading.current_thread():
            self._watcher.join(timeout=THREAD_JOIN_TIMEOUT)

    def _resolve_main_pids(self) -> tuple[list[int], int | None]:
        if self.main_pids:
            return self.main_pids, self.main_pids[0]
        if self.main_pids is not None:
            return [], None
        try:
            return self.processes.find_main_processes(self.metrics_file)
        except ProcessError as e:
            logger.error("Get main processes failed: %s", e)
            return [], None

    def _check_mark(self, main_pid: int) -> None:
        """Record how the training process ended, from its mark file."""
        mark = read_mark(self.mark_dir, main_pid)
        self.result.main_mark = mark
        if mark is None:
            logger.warning(
                "Main process %d exited without a completion mark, training may have failed",
                main_pid,
            )
        else:
            logger.info("Main process %d is marked %s", main_pid, mark.value)

    def _report_budget(self) -> float:
        """Upper bound on the time two service calls can take with retries."""
        delay = self.config.retry_backoff
        backoff_total = 0.0
        for _ in range(max(0, self.config.retry_attempts - 1)):
            backoff_total += delay
            delay *= self.config.retry_backoff_factor
        per_call = self.config.retry_attempts * self.config.request_timeout + backoff_total
        return 2 * per_call

    def _watch(self, main_pid: int | None) -> None:
        """Wait for the metrics file, then follow it feeding lines to the engine."""
        found = wait_for_file(
            self.metrics_file,
            poll_interval=self.config.file_poll_interval,
            max_interval=self.config.file_poll_max_interval,
            stop_event=self._stop_event,
        )
        if not found:
            logger.debug("Stopped before %s was created", self.metrics_file)
            return

        try:
            for line in follow(self.metrics_file, stop_event=self._stop_event):
                logger.debug("%s", line)
                if self.engine is None:
                    continue
                decision = self.engine.consume_line(line)
                if decision is not None:
                    self._early_stop(decision, main_pid)
                    return
        except OSError as e:
            logger.error("Failed to follow metrics file %s: %s", self.metrics_file, e)

    def _early_stop(self, decision: TriggerDecision, main_pid: int | None) -> None:
        """Terminate the training process and report the trial as early stopped."""
        if not self.guard.claim(TrialOutcome.EARLY_STOPPED):
            logger.info("Trial already completed, skipping early stopping")
            return

        try:
            self.result.outcome = TrialOutcome.EARLY_STOPPED
            logger.info(
                "Training container is early stopped (last metric %s=%s)",
                decision.metric_name,
                decision.value,
            )

            if main_pid is None:
                logger.error("No main process to early stop")
            else:
                self._terminate_training(main_pid)

            self._report()
            self._set_status()
        finally:
            self.guard.done.set()

    def _terminate_training(self, main_pid: int) -> None:
        try:
            mark = write_mark(self.mark_dir, main_pid, ProcessMark.EARLY_STOPPED)
            logger.debug("Created mark file %s", mark)
        except OSError as e:
            logger.error("Create mark file for PID %d error: %s", main_pid, e)

        try:
            child = self.processes.single_child(main_pid)
            self.processes.terminate(child)
        except ProcessError as e:
            logger.error("Early stopping could not terminate training: %s", e)

        try:
            self.processes.wait_for_exit(
                [main_pid],
                poll_interval=self.config.poll_interval,
                timeout=self.config.early_stop_timeout,
            )
        except ProcessError as e:
            logger.warning("Main process did not exit after early stopping: %s", e)

    def _report(self) -> None:
        """Report the observation log of the trial."""
        try:
            observation_log = collect_observation_log(
                self.metrics_file,
                self.metric_names,
                self.filters,
            )
        except (OSError, MetricWatchError) as e:
            logger.error("Failed to collect logs: %s", e)
            self.result.errors.append(f"collect: {e}")
            return

        try:
            _ = self.db_client.report_observation_log(self.trial_name, observation_log)
        except TransportError as e:
            logger.error("Failed to report logs: %s", e)
            self.result.errors.append(f"report: {e}")
            return

        self.result.reported = True
        logger.info(
            "Metrics reported: %d observations for trial %s",
            len(observation_log.metric_logs),
            self.trial_name,
        )

    def _set_status(self) -> None:
        """Mark the trial as early stopped."""
        try:
            _ = self.early_stop_client.set_trial_status(
                self.trial_name,
                TrialOutcome.EARLY_STOPPED.value,
            )
        except TransportError as e:
            logger.error("Set trial status error: %s", e)
            self.result.errors.append(f"status: {e}")
            self.result.status_updated = False
            return

        self.result.status_updated = True
        logger.info("Trial status is successfully updated")
