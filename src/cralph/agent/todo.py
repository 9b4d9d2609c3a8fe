"""TODO document tracking for the iteration loop."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from cralph.agent.models import TodoState
from cralph.errors import AgentTimeoutError

if TYPE_CHECKING:
    from cralph.cancellation import CancellationToken
    from cralph.runner import AgentRunner

LOGGER = logging.getLogger(__name__)

INITIAL_TODO_CONTENT = """# Tasks

- [ ] Task 1
- [ ] Task 2

# Notes

_None yet_
"""

GOAL_PROMPT_TEMPLATE = """Break the following goal into a short ordered task list.

Goal:
{goal}

Reply with ONLY a markdown document in exactly this format and nothing else:

# Tasks

- [ ] <first task>
- [ ] <second task>

# Notes

_None yet_
"""


class TodoTracker:
    """Classifies and resets the TODO document the agent works from.

    Clean means the trimmed content equals the initial template. That is a
    literal comparison: a document edited back to the template text is clean.
    """

    def __init__(self, todo_file: str | Path) -> None:
        self.todo_file = Path(todo_file)

    def ensure_initialized(self) -> TodoState:
        if not self.todo_file.exists():
            self.reset()
            return "created"
        return "clean" if self.is_clean() else "dirty"

    def is_clean(self) -> bool:
        if not self.todo_file.exists():
            return True
        content = self.todo_file.read_text(encoding="utf-8")
        return content.strip() == INITIAL_TODO_CONTENT.strip()

    def reset(self) -> None:
        self.todo_file.parent.mkdir(parents=True, exist_ok=True)
        self.todo_file.write_text(INITIAL_TODO_CONTENT, encoding="utf-8")

    def generate_from_goal(
        self,
        goal: str,
        runner: AgentRunner,
        *,
        timeout: float,
        token: CancellationToken | None = None,
    ) -> bool:
        """Ask the agent for a task list covering ``goal`` and store it.

        Returns ``True`` when the document was rewritten. Timeouts and failed
        calls leave the document as it was.
        """
        prompt = GOAL_PROMPT_TEMPLATE.format(goal=goal.strip())
        try:
            result = runner.run_bounded(prompt, timeout=timeout, token=token)
        except AgentTimeoutError as exc:
            LOGGER.warning("todo_generation_timeout", extra={"timeout": exc.timeout})
            return False

        if result.returncode != 0:
            LOGGER.warning(
                "todo_generation_failed",
                extra={"returncode": result.returncode, "stderr_length": len(result.stderr)},
            )
            return False

        document = _extract_todo_document(result.stdout)
        if document is None:
            LOGGER.warning("todo_generation_unrecognized", extra={"stdout_length": len(result.stdout)})
            return False

        self.todo_file.parent.mkdir(parents=True, exist_ok=True)
        self.todo_file.write_text(document, encoding="utf-8")
        return True


def _extract_todo_document(text: str) -> str | None:
    start = text.find("# Tasks")
    if start < 0:
        return None
    document = text[start:].strip()
    # Agents sometimes wrap the answer in a code fence.
    if document.endswith("```"):
        document = document[:-3].rstrip()
    return document + "\n"
