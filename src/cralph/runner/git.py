"""Best-effort git commits of loop progress."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

from .base import normalize_output

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CommitResult:
    committed: bool
    detail: str = ""


def commit_message(iteration: int) -> str:
    return f"cralph: iteration {iteration}"


class GitCommitter:
    """Stages everything and commits it. Never raises for git failures."""

    def __init__(self, executable: str = "git") -> None:
        self.executable = executable

    def commit_progress(self, iteration: int, *, cwd: str) -> CommitResult:
        for argv in (
            [self.executable, "add", "-A"],
            [self.executable, "commit", "-m", commit_message(iteration)],
        ):
            try:
                process = subprocess.run(argv, capture_output=True, cwd=cwd, check=False)
            except OSError as exc:
                return CommitResult(committed=False, detail=str(exc))
            if process.returncode != 0:
                detail = (
                    normalize_output(process.stderr).strip()
                    or normalize_output(process.stdout).strip()
                    or f"{argv[1]} exited with code {process.returncode}"
                )
                return CommitResult(committed=False, detail=detail.splitlines()[0][:240])

        LOGGER.info("progress_committed", extra={"iteration": iteration, "cwd": cwd})
        return CommitResult(committed=True)
