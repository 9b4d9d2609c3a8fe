"""Base agent runner primitives."""

from __future__ import annotations

import abc
import locale
import logging
import subprocess
import time
from dataclasses import dataclass

from cralph.cancellation import CancellationToken
from cralph.errors import AgentTimeoutError

LOGGER = logging.getLogger(__name__)

SPAWN_FAILURE_RETURNCODE = 127


@dataclass(slots=True)
class AgentResult:
    """Result of one agent process invocation."""

    runner: str
    returncode: int
    stdout: str
    stderr: str
    duration_seconds: float = 0.0
    spawned: bool = True

    @property
    def output(self) -> str:
        """Standard output followed by standard error."""
        return self.stdout + self.stderr


class AgentRunner(abc.ABC):
    """Abstract adapter around an agent CLI that reads its prompt from stdin."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Friendly runner name."""

    @abc.abstractmethod
    def iteration_command(self) -> list[str]:
        """Argument vector for a loop iteration."""

    @abc.abstractmethod
    def auxiliary_command(self) -> list[str]:
        """Argument vector for short one-shot calls."""

    @abc.abstractmethod
    def is_installed(self) -> bool:
        """Whether the agent executable can be found on PATH."""

    @abc.abstractmethod
    def install_instructions(self) -> str:
        """Human-readable hint for installing the agent CLI."""

    def run(
        self,
        prompt: str,
        *,
        cwd: str | None = None,
        token: CancellationToken | None = None,
    ) -> AgentResult:
        """Run one iteration to completion with no time limit.

        The process handle is registered on ``token`` while it runs so the signal
        boundary can kill it.
        """
        argv = self.iteration_command()
        self.log_request(argv, cwd=cwd, timeout=None)
        started = self.monotonic_now()
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as exc:
            result = self._spawn_failure(exc, started)
            self.log_result(result)
            return result

        if token is not None:
            token.track(process)
        try:
            stdout, stderr = process.communicate(prompt.encode("utf-8"))
        except BaseException:
            _kill_and_reap(process)
            raise
        finally:
            if token is not None:
                token.untrack()

        result = AgentResult(
            runner=self.name,
            returncode=process.returncode,
            stdout=normalize_output(stdout),
            stderr=normalize_output(stderr),
            duration_seconds=self.monotonic_now() - started,
        )
        self.log_result(result)
        return result

    def run_bounded(
        self,
        prompt: str,
        *,
        timeout: float,
        cwd: str | None = None,
        token: CancellationToken | None = None,
    ) -> AgentResult:
        """Run a one-shot call, killing the process if it outlives ``timeout``.

        Raises ``AgentTimeoutError`` on expiry. Spawn failures come back as a
        result with ``spawned=False``. Like ``run``, the process is tracked on
        ``token`` while it is alive.
        """
        argv = self.auxiliary_command()
        self.log_request(argv, cwd=cwd, timeout=timeout)
        started = self.monotonic_now()
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as exc:
            result = self._spawn_failure(exc, started)
            self.log_result(result)
            return result

        if token is not None:
            token.track(process)
        try:
            stdout, stderr = process.communicate(prompt.encode("utf-8"), timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            stdout, stderr = process.communicate()
            LOGGER.warning(
                "agent_timeout",
                extra={"runner": self.name, "timeout": timeout, "pid": process.pid},
            )
            raise AgentTimeoutError(
                timeout, normalize_output(stdout) + normalize_output(stderr)
            ) from None
        except BaseException:
            _kill_and_reap(process)
            raise
        finally:
            if token is not None:
                token.untrack()

        result = AgentResult(
            runner=self.name,
            returncode=process.returncode,
            stdout=normalize_output(stdout),
            stderr=normalize_output(stderr),
            duration_seconds=self.monotonic_now() - started,
        )
        self.log_result(result)
        return result

    def log_request(self, argv: list[str], *, cwd: str | None, timeout: float | None) -> None:
        LOGGER.info(
            "agent_request",
            extra={"runner": self.name, "argv": " ".join(argv), "cwd": cwd, "timeout": timeout},
        )

    def log_result(self, result: AgentResult) -> None:
        LOGGER.info(
            "agent_result",
            extra={
                "runner": result.runner,
                "returncode": result.returncode,
                "duration_seconds": round(result.duration_seconds, 4),
                "spawned": result.spawned,
                "stdout_length": len(result.stdout),
                "stderr_length": len(result.stderr),
            },
        )

    @staticmethod
    def monotonic_now() -> float:
        return time.monotonic()

    def _spawn_failure(self, exc: OSError, started: float) -> AgentResult:
        return AgentResult(
            runner=self.name,
            returncode=SPAWN_FAILURE_RETURNCODE,
            stdout="",
            stderr=f"Failed to start {self.name}: {exc}",
            duration_seconds=self.monotonic_now() - started,
            spawned=False,
        )


def _kill_and_reap(process: subprocess.Popen[bytes]) -> None:
    """Kill a child whose ``communicate`` was interrupted and wait for it."""
    try:
        process.kill()
        process.wait()
    except OSError:
        return
    LOGGER.info("agent_process_killed", extra={"pid": process.pid})


def normalize_output(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    for encoding in ("utf-8", "utf-8-sig", locale.getpreferredencoding(False)):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")
