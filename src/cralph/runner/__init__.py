"""Agent runner and version-control collaborators."""

from .auth import check_agent_auth
from .base import AgentResult, AgentRunner
from .claude_runner import ClaudeRunner
from .git import CommitResult, GitCommitter


def create_agent_runner(agent_name: str, *, executable: str | None = None) -> AgentRunner:
    normalized = agent_name.strip().lower()
    if normalized in {"claude", "claude-code"}:
        return ClaudeRunner(executable=executable)
    msg = f"Unsupported agent runner: {agent_name}"
    raise ValueError(msg)


__all__ = [
    "AgentResult",
    "AgentRunner",
    "ClaudeRunner",
    "CommitResult",
    "GitCommitter",
    "check_agent_auth",
    "create_agent_runner",
]
