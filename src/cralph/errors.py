"""Exception types raised across cralph."""

from __future__ import annotations


class CralphError(RuntimeError):
    """Base class for errors the CLI reports as a single line."""


class ConfigurationError(CralphError):
    """Raised when the run configuration is missing or unusable."""


class PathNotFoundError(ConfigurationError):
    """Raised when a configured refs path does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Refs path does not exist: {path}")
        self.path = path


class ConfigFileNotFoundError(ConfigurationError):
    """Raised when a paths file cannot be found."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Paths file not found: {path}")
        self.path = path


class CancellationError(CralphError):
    """Raised when the user aborts a prompt or a shutdown was requested."""

    def __init__(self, message: str = "Selection cancelled") -> None:
        super().__init__(message)


class AgentTimeoutError(CralphError):
    """Raised when a bounded auxiliary agent call exceeds its time limit."""

    def __init__(self, timeout: float, output: str = "") -> None:
        super().__init__(f"Agent call timed out after {timeout:.1f}s")
        self.timeout = timeout
        self.output = output
