# Copyright (c) Syntropy Systems
"""Discovery, termination and supervision of the monitored processes."""
from __future__ import annotations

import logging
import time
from enum import Enum
from typing import TYPE_CHECKING

import psutil

from metricwatch.errors import ProcessError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path
    from threading import Event

logger = logging.getLogger(__name__)

MARK_FILE_SUFFIX = ".pid"


class ProcessMark(str, Enum):
    """How a main process ended, as written to its mark file."""

    COMPLETED = "completed"
    EARLY_STOPPED = "early-stopped"


def mark_file_path(mark_dir: Path, pid: int) -> Path:
    """Path of the mark file for a main process."""
    return mark_dir / f"{pid}{MARK_FILE_SUFFIX}"


def write_mark(mark_dir: Path, pid: int, mark: ProcessMark) -> Path:
    """Record how a main process ended."""
    path = mark_file_path(mark_dir, pid)
    _ = path.write_text(mark.value)
    return path


def read_mark(mark_dir: Path, pid: int) -> ProcessMark | None:
    """Read the mark file of a main process, if present and valid."""
    path = mark_file_path(mark_dir, pid)
    try:
        content = path.read_text().strip()
    except FileNotFoundError:
        return None
    try:
        return ProcessMark(content)
    except ValueError:
        logger.warning("Unknown mark %r in %s", content, path)
        return None


class ProcessController:
    """Wraps psutil for the operations the collector needs.

    Only a single child of the main process is supported: the training
    command is expected to run as the one child of a wrapper process.
    """

    def find_main_processes(self, metrics_file: Path) -> tuple[list[int], int]:
        """Find the processes writing the metrics file.

        Main processes are the outermost processes whose command line
        references ``metrics_file``, typically the shell wrapper redirecting
        the training output there. This process and its ancestors are
        ignored. When several are found the lowest PID is the training
        process that early stopping marks and terminates.

        Returns:
            Sorted main PIDs to supervise and the PID of the training process

        Raises:
            ProcessError: If no process references the metrics file

        """
        own = psutil.Process()
        excluded = {own.pid} | {p.pid for p in own.parents()}
        marker = str(metrics_file)

        writers: dict[int, int] = {}
        for proc in psutil.process_iter(["pid", "ppid", "cmdline"]):
            info = proc.info
            if info["pid"] in excluded:
                continue
            cmdline = " ".join(info["cmdline"] or [])
            if marker in cmdline:
                writers[info["pid"]] = info["ppid"]

        outermost = sorted(pid for pid, ppid in writers.items() if ppid not in writers)
        if not outermost:
            msg = f"No process references metrics file {marker}"
            raise ProcessError(msg)
        if len(outermost) > 1:
            logger.warning(
                "Several processes reference %s: %s, using %d",
                marker,
                outermost,
                outermost[0],
            )

        return outermost, outermost[0]

    def single_child(self, pid: int) -> psutil.Process:
        """Return the only child of a process.

        Raises:
            ProcessError: If the process is gone or has zero or several children

        """
        try:
            children = psutil.Process(pid).children()
        except psutil.Error as e:
            msg = f"Get children processes for main PID {pid} failed: {e}"
            raise ProcessError(msg) from e

        if len(children) != 1:
            pids = [c.pid for c in children]
            msg = (
                f"Exactly one child process is supported for main PID {pid}, "
                f"found {len(children)}: {pids}"
            )
            raise ProcessError(msg)
        return children[0]

    def terminate(self, proc: psutil.Process) -> None:
        """Send SIGTERM to a process. A process that is already gone is fine."""
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            logger.debug("Process %d already exited", proc.pid)
        except psutil.Error as e:
            msg = f"Unable to terminate process {proc.pid}: {e}"
            raise ProcessError(msg) from e

    def is_running(self, pid: int) -> bool:
        """Check whether a process is alive (zombies count as exited)."""
        try:
            proc = psutil.Process(pid)
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.Error as e:
            msg = f"Check process status for PID {pid} failed: {e}"
            raise ProcessError(msg) from e

    def wait_for_exit(  # noqa: PLR0913
        self,
        pids: Iterable[int],
        poll_interval: float = 1.0,
        timeout: float = 0.0,
        wait_all: bool = True,
        stop_event: Event | None = None,
    ) -> None:
        """Poll until the processes exit.

        Args:
            pids: Processes to wait for
            poll_interval: Seconds between liveness checks
            timeout: Maximum seconds to wait, 0 or less waits forever
            wait_all: Wait for every process instead of the first one to exit
            stop_event: Returns early when set

        Raises:
            ProcessError: If the timeout elapses first

        """
        pending = set(pids)
        if not pending:
            return

        deadline = time.monotonic() + timeout if timeout > 0 else None
        while True:
            finished = {pid for pid in pending if not self._alive(pid)}
            for pid in sorted(finished):
                logger.debug("Main process %d exited", pid)
            pending -= finished

            if not pending or (finished and not wait_all):
                return

            if stop_event is not None and stop_event.is_set():
                return

            if deadline is not None and time.monotonic() >= deadline:
                msg = f"Timeout waiting for processes {sorted(pending)} to exit"
                raise ProcessError(msg)

            time.sleep(poll_interval)

    def _alive(self, pid: int) -> bool:
        try:
            return self.is_running(pid)
        except ProcessError as e:
            logger.warning("%s", e)
            return True
