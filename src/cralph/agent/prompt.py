"""Prompt text handed to the agent on every iteration."""

from __future__ import annotations

from cralph.agent.models import RalphConfig

COMPLETION_SIGNAL = "<promise>COMPLETE</promise>"

BASE_PROMPT = f"""You are an autonomous coding agent running in a loop.

## Your Task This Iteration

1. Read the TODO file
2. Pick the FIRST uncompleted task (marked with [ ])
3. Implement that SINGLE task
4. Run quality checks (typecheck, lint, test - whatever the project requires)
5. If checks pass, mark the task [x] complete
6. Append your progress to the Notes section
7. **STOP** - End your response. Another iteration will handle the next task.

## Critical Rules

- **ONE task per iteration** - Complete exactly ONE task, then STOP. Do NOT continue to the next task.
- **Quality first** - Do NOT mark a task complete if tests/typecheck fail
- **Keep changes focused** - Minimal, targeted changes only
- **Follow existing patterns** - Match the codebase style

## Progress Format

After completing a task, APPEND to the Notes section:

```
## [Task Title] - Done
- What was implemented
- Files changed
- **Learnings:**
  - Patterns discovered
  - Gotchas encountered
```

## Refs (Read-Only)

If refs paths are provided, they are READ-ONLY reference material. Never modify files in refs.

## Stop Condition

After completing ONE task, check the TODO file:

- If there are still tasks marked [ ] (pending): **END your response normally.** Another iteration will pick up the next task.

- If ALL tasks are marked [x] (complete): Output exactly:

{COMPLETION_SIGNAL}

**IMPORTANT:** Do NOT continue to the next task. Complete ONE task, then STOP."""


def build_prompt(config: RalphConfig, todo_file: str) -> str:
    """Compose the iteration prompt. Deterministic for a given config and TODO path."""
    refs_list = "\n".join(f"- {ref}" for ref in config.refs) if config.refs else "_None_"
    return "\n".join(
        [
            BASE_PROMPT,
            "",
            "---",
            "",
            "## Configuration",
            "",
            "**TODO file (read first, update after each task):**",
            todo_file,
            "",
            "**Refs (read-only reference material):**",
            refs_list,
            "",
            "**Output directory (write your work here):**",
            config.output,
            "",
        ]
    )


def is_completion_signal(output: str) -> bool:
    """Return true when agent output carries the exact completion sentinel."""
    return COMPLETION_SIGNAL in output
