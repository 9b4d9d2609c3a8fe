"""Claude CLI runner implementation."""

from __future__ import annotations

import platform
import shutil

from .base import AgentRunner

DEFAULT_EXECUTABLE = "claude"

_INSTALL_INSTRUCTIONS = {
    "Darwin": (
        "Install Claude CLI:\n"
        "  npm install -g @anthropic-ai/claude-code\n\n"
        "Or via Homebrew:\n"
        "  brew install claude"
    ),
}
_DEFAULT_INSTALL_INSTRUCTIONS = "Install Claude CLI:\n  npm install -g @anthropic-ai/claude-code"


class ClaudeRunner(AgentRunner):
    """Runs ``claude -p`` with the prompt on stdin."""

    def __init__(self, executable: str | None = None) -> None:
        self.executable = executable or DEFAULT_EXECUTABLE

    @property
    def name(self) -> str:
        return "claude"

    def iteration_command(self) -> list[str]:
        return [self.executable, "-p", "--dangerously-skip-permissions"]

    def auxiliary_command(self) -> list[str]:
        return [self.executable, "-p"]

    def is_installed(self) -> bool:
        return shutil.which(self.executable) is not None

    def install_instructions(self, system_name: str | None = None) -> str:
        current_system = platform.system() if system_name is None else system_name
        return _INSTALL_INSTRUCTIONS.get(current_system, _DEFAULT_INSTALL_INSTRUCTIONS)
