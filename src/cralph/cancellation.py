"""Cooperative cancellation shared by prompts, the loop, and the signal handlers."""

from __future__ import annotations

import logging
import subprocess

from .errors import CancellationError

LOGGER = logging.getLogger(__name__)


class _Cancelled:
    """Sentinel returned by prompts when the user backs out."""

    def __repr__(self) -> str:
        return "CANCELLED"


CANCELLED = _Cancelled()


class CancellationToken:
    """Holds the shutdown flag and the handle of the in-flight agent process.

    All access happens on the main thread; signal handlers run there too, so no
    locking is needed.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._process: subprocess.Popen[bytes] | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def reset(self) -> None:
        """Clear the flag. Only tests should need this."""
        self._cancelled = False

    def raise_if_cancelled(self, result: object = None) -> None:
        """Raise ``CancellationError`` if a prompt was cancelled or shutdown began."""
        if result is CANCELLED or self._cancelled:
            raise CancellationError()

    @property
    def process(self) -> subprocess.Popen[bytes] | None:
        return self._process

    def track(self, process: subprocess.Popen[bytes]) -> None:
        self._process = process

    def untrack(self) -> None:
        self._process = None

    def kill_tracked_process(self) -> None:
        process = self._process
        self._process = None
        if process is None:
            return
        try:
            process.kill()
        except OSError:
            # Already exited.
            return
        LOGGER.info("tracked_process_killed", extra={"pid": process.pid})
