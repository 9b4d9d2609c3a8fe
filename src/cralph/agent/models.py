"""Data models shared by the iteration loop and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

TodoState = Literal["created", "clean", "dirty"]


@dataclass(slots=True)
class PathsFile:
    """Stored form of ``.ralph/paths.json`` with paths relative to the working directory."""

    refs: list[str]
    output: str


@dataclass(slots=True)
class RalphConfig:
    """Resolved run configuration; every path is absolute."""

    refs: list[str]
    output: str


@dataclass(slots=True)
class SessionState:
    """Mutable bookkeeping for a single controller run."""

    log_file: str
    todo_file: str
    iteration: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class IterationResult:
    """Outcome of one agent invocation."""

    exit_code: int
    output: str
    is_complete: bool
