# Copyright (c) Syntropy Systems
"""Follow a growing log file line by line."""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path
    from threading import Event

logger = logging.getLogger(__name__)


def wait_for_file(
    path: Path,
    poll_interval: float = 0.5,
    max_interval: float = 5.0,
    stop_event: Event | None = None,
) -> bool:
    """Wait for a file to exist, backing off between checks.

    The delay starts at ``poll_interval`` and doubles up to ``max_interval``.
    Returns False if ``stop_event`` was set before the file appeared.
    """
    delay = poll_interval
    while True:
        try:
            if path.exists():
                return True
        except OSError as e:
            logger.warning("Could not watch metrics file %s: %s", path, e)

        if stop_event is None:
            time.sleep(delay)
        elif stop_event.wait(timeout=delay):
            return False
        delay = min(delay * 2, max_interval)


def follow(
    path: Path,
    poll_interval: float = 0.1,
    stop_event: Event | None = None,
) -> Iterator[str]:
    """Yield lines appended to a file, like ``tail -f``.

    Starts at the beginning of the file. Partial lines are held back until
    their newline arrives. When ``stop_event`` is set the remaining complete
    lines are yielded, then any trailing partial line, then iteration ends.
    """
    with path.open(errors="replace") as f:
        pending = ""
        while True:
            chunk = f.readline()
            if chunk:
                pending += chunk
                if pending.endswith("\n"):
                    yield pending.rstrip("\r\n")
                    pending = ""
                continue

            if stop_event is not None and stop_event.is_set():
                if pending:
                    yield pending
                return

            if stop_event is None:
                time.sleep(poll_interval)
            else:
                _ = stop_event.wait(timeout=poll_interval)
