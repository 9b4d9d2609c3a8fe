"""Iteration loop that keeps invoking the agent until it signals completion."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from cralph.agent.models import IterationResult, RalphConfig, SessionState
from cralph.agent.prompt import build_prompt, is_completion_signal
from cralph.agent.session_log import SessionLog
from cralph.agent.todo import TodoTracker
from cralph.cancellation import CancellationToken
from cralph.errors import CancellationError
from cralph.paths import RALPH_DIR_NAME
from cralph.runner import AgentResult, CommitResult

LOGGER = logging.getLogger(__name__)

LOG_FILE_NAME = "ralph.log"
TODO_FILE_NAME = "TODO.md"
DEFAULT_ITERATION_DELAY = 2.0

ConfirmTodoReset = Callable[[], bool]
Reporter = Callable[[str], None]
Sleeper = Callable[[float], None]


class IterationRunner(Protocol):
    def run(
        self,
        prompt: str,
        *,
        cwd: str | None = None,
        token: CancellationToken | None = None,
    ) -> AgentResult: ...


class ProgressCommitter(Protocol):
    def commit_progress(self, iteration: int, *, cwd: str) -> CommitResult: ...


class IterationController:
    """Runs the prompt, log, commit, check, sleep cycle.

    A failed iteration is logged and followed by another one; only the
    completion sentinel or cancellation ends the loop.
    """

    def __init__(
        self,
        *,
        runner: IterationRunner,
        committer: ProgressCommitter | None = None,
        token: CancellationToken | None = None,
        iteration_delay: float = DEFAULT_ITERATION_DELAY,
        confirm_todo_reset: ConfirmTodoReset | None = None,
        report: Reporter | None = None,
        sleep: Sleeper = time.sleep,
    ) -> None:
        self.runner = runner
        self.committer = committer
        self.token = token or CancellationToken()
        self.iteration_delay = iteration_delay
        self.confirm_todo_reset = confirm_todo_reset
        self.report = report
        self.sleep = sleep
        self._session_log: SessionLog | None = None

    def initialize(self, config: RalphConfig) -> SessionState:
        ralph_dir = Path(config.output) / RALPH_DIR_NAME
        ralph_dir.mkdir(parents=True, exist_ok=True)

        state = SessionState(
            log_file=str(ralph_dir / LOG_FILE_NAME),
            todo_file=str(ralph_dir / TODO_FILE_NAME),
        )
        self._session_log = SessionLog(state.log_file)
        self._session_log.write_header(state.start_time)

        tracker = TodoTracker(state.todo_file)
        todo_state = tracker.ensure_initialized()
        if todo_state == "dirty":
            should_reset = self.confirm_todo_reset() if self.confirm_todo_reset else False
            self.token.raise_if_cancelled()
            if should_reset:
                tracker.reset()
                self._report("TODO reset to clean state")
            else:
                self._report("Continuing with existing TODO state")
        LOGGER.info(
            "session_initialized",
            extra={"log_file": state.log_file, "todo_file": state.todo_file, "todo_state": todo_state},
        )
        return state

    def run_iteration(self, prompt: str, state: SessionState, cwd: str) -> IterationResult:
        state.iteration += 1
        self._report(f"Iteration {state.iteration}: invoking {self._runner_name()}...")
        self._log(state, f"Iteration {state.iteration} starting")

        agent_result = self.runner.run(prompt, cwd=cwd, token=self.token)
        output = agent_result.output
        self._log(state, output)

        result = IterationResult(
            exit_code=agent_result.returncode,
            output=output,
            is_complete=is_completion_signal(output),
        )
        if result.is_complete:
            self._report(f"Complete! All tasks finished in {state.iteration} iteration(s).")
        elif result.exit_code == 0:
            self._report(f"Iteration {state.iteration} complete")
        else:
            LOGGER.warning(
                "iteration_failed",
                extra={"iteration": state.iteration, "returncode": result.exit_code},
            )
            self._report(f"Iteration {state.iteration} exited with code {result.exit_code}")
        self._report(output)
        return result

    def attempt_commit_progress(self, state: SessionState, cwd: str) -> None:
        if self.committer is None:
            return
        try:
            outcome = self.committer.commit_progress(state.iteration, cwd=cwd)
        except CancellationError:
            raise
        except Exception as exc:  # noqa: BLE001 - commits must never stop the loop
            outcome = CommitResult(committed=False, detail=str(exc))
        if outcome.committed:
            self._log(state, f"Committed progress for iteration {state.iteration}")
            return
        LOGGER.warning(
            "commit_failed",
            extra={"iteration": state.iteration, "detail": outcome.detail},
        )
        self._log(state, f"WARNING: commit skipped for iteration {state.iteration}: {outcome.detail}")

    def run(self, config: RalphConfig, *, cwd: str | None = None) -> SessionState:
        """Loop until the agent prints the completion sentinel.

        Raises ``CancellationError`` when the token is cancelled between iterations.
        """
        working_directory = cwd or str(Path.cwd())
        state = self.initialize(config)
        self._report(f"Log: {state.log_file}")
        self._report(f"TODO: {state.todo_file}")

        prompt = build_prompt(config, state.todo_file)
        Path(config.output).mkdir(parents=True, exist_ok=True)

        while True:
            self.token.raise_if_cancelled()
            self._report("━" * 40)
            result = self.run_iteration(prompt, state, working_directory)
            self.attempt_commit_progress(state, working_directory)
            if result.is_complete:
                break
            self.token.raise_if_cancelled()
            self.sleep(self.iteration_delay)

        duration = (datetime.now(timezone.utc) - state.start_time).total_seconds()
        self._report(f"Finished in {duration:.1f}s")
        return state

    def _log(self, state: SessionState, message: str) -> None:
        if self._session_log is None or str(self._session_log.log_file) != state.log_file:
            self._session_log = SessionLog(state.log_file)
        self._session_log.append(message)

    def _report(self, message: str) -> None:
        if self.report is not None:
            self.report(message)

    def _runner_name(self) -> str:
        return str(getattr(self.runner, "name", self.runner.__class__.__name__))
