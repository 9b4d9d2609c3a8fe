"""Command-line interface for cralph."""

from __future__ import annotations

import argparse
import logging
import os
import signal
from collections.abc import Callable
from pathlib import Path
from types import FrameType
from typing import cast

from .agent.loop import TODO_FILE_NAME, IterationController
from .agent.models import RalphConfig
from .agent.todo import TodoTracker
from .cancellation import CancellationToken
from .config import AppConfig
from .errors import CancellationError, ConfigurationError
from .paths import (
    RALPH_DIR_NAME,
    create_starter_structure,
    find_paths_file,
    list_directories,
    list_directories_recursive,
    load_paths_file,
    paths_file_location,
    resolve_paths_config,
    save_paths_file,
    validate_config,
)
from .prompts import Option, Prompter
from .runner import AgentRunner, GitCommitter, check_agent_auth, create_agent_runner

LOGGER = logging.getLogger(__name__)

SignalHandler = Callable[[int, FrameType | None], object]


class CLIArgs(argparse.Namespace):
    refs: str | None
    output: str | None
    goal: str | None
    yes: bool


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cralph",
        description="Claude in a loop. Point at refs, let it cook.",
    )
    parser.add_argument(
        "-r",
        "--refs",
        metavar="PATH1,PATH2",
        help="Comma-separated refs paths (read-only source material)",
    )
    parser.add_argument(
        "-o",
        "--output",
        metavar="DIR",
        help="Output directory where results will be written",
    )
    parser.add_argument(
        "-g",
        "--goal",
        help="Generate the TODO task list from this goal before the loop starts",
    )
    parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Auto-confirm all prompts (for CI/automation)",
    )
    return parser


def install_signal_handlers(token: CancellationToken) -> dict[int, object]:
    """Route SIGINT/SIGTERM through ``token``; returns the previous handlers."""

    def handle_interrupt(_signum: int, _frame: FrameType | None) -> None:
        if token.is_cancelled:
            os._exit(1)
        token.cancel()
        token.kill_tracked_process()
        raise CancellationError("Cancelled")

    def handle_terminate(_signum: int, _frame: FrameType | None) -> None:
        token.kill_tracked_process()
        raise SystemExit(0)

    previous = {
        signal.SIGINT: signal.getsignal(signal.SIGINT),
        signal.SIGTERM: signal.getsignal(signal.SIGTERM),
    }
    signal.signal(signal.SIGINT, handle_interrupt)
    signal.signal(signal.SIGTERM, handle_terminate)
    return previous


def restore_signal_handlers(previous: dict[int, object]) -> None:
    for signum, handler in previous.items():
        if handler is not None:
            signal.signal(signum, cast(SignalHandler, handler))


def main() -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args())
    config = AppConfig.from_env()
    logging.basicConfig(
        level=config.numeric_log_level,
        format="%(levelname)s %(name)s: %(message)s",
    )

    token = CancellationToken()
    previous_handlers = install_signal_handlers(token)
    try:
        runner = create_agent_runner(config.agent, executable=config.agent_executable)
        return _run(args, config, runner, token, Prompter(token))
    except CancellationError:
        print()
        print("Cancelled.")
        return 0
    except Exception as exc:  # noqa: BLE001 - top-level boundary reports one line
        LOGGER.debug("unhandled_error", exc_info=True)
        print(f"Error: {exc}" if str(exc) else "An unexpected error occurred")
        return 1
    finally:
        restore_signal_handlers(previous_handlers)


def _run(
    args: CLIArgs,
    config: AppConfig,
    runner: AgentRunner,
    token: CancellationToken,
    prompter: Prompter,
) -> int:
    cwd = str(Path.cwd())

    if not runner.is_installed():
        print(f"{runner.name} CLI is not installed or not on PATH.\n")
        print(runner.install_instructions())
        return 1

    print(f"Checking {runner.name} authentication...")
    authenticated = check_agent_auth(
        runner,
        cache_path=Path(config.auth_cache_path),
        ttl_seconds=config.auth_cache_ttl_seconds,
        timeout=config.auth_timeout,
        token=token,
    )
    if not authenticated:
        print(f"{runner.name} CLI is not authenticated.\n")
        print(f"Run `{runner.name}`, then type: /login")
        print("After logging in, run cralph again.")
        return 1
    print(f"{runner.name} authenticated")

    ralph_config = _resolve_run_config(args, cwd, prompter)
    if ralph_config is None:
        return 0

    print("Validating configuration...")
    validate_config(ralph_config)

    print("Configuration:")
    print(f"  Refs: {', '.join(ralph_config.refs) if ralph_config.refs else '(none)'}")
    print(f"  Output: {ralph_config.output}")
    print()

    if not args.yes and not prompter.confirm("Start processing?"):
        print("Cancelled.")
        return 0

    todo_generated = False
    if args.goal:
        todo_generated = _generate_todo(
            args.goal, ralph_config, runner, config.todo_timeout, token
        )

    confirm_todo_reset: Callable[[], bool] | None
    if todo_generated:
        confirm_todo_reset = None
    elif args.yes:
        # Unattended restarts resume from the existing TODO.
        confirm_todo_reset = lambda: False  # noqa: E731
    else:
        confirm_todo_reset = lambda: prompter.confirm(  # noqa: E731
            "Found existing TODO with progress. Reset to start fresh?"
        )

    print("Starting cralph...")
    controller = IterationController(
        runner=runner,
        committer=GitCommitter() if config.commit_progress else None,
        token=token,
        iteration_delay=config.iteration_delay,
        confirm_todo_reset=confirm_todo_reset,
        report=print,
    )
    print("Press Ctrl+C to stop\n")
    controller.run(ralph_config, cwd=cwd)
    return 0


def _resolve_run_config(args: CLIArgs, cwd: str, prompter: Prompter) -> RalphConfig | None:
    """Pick the run configuration from the paths file, flags, or interactive menus.

    Returns ``None`` when a starter structure was created and the user should
    fill it in before running again.
    """
    existing: RalphConfig | None = None
    paths_file = find_paths_file(cwd)
    if paths_file is not None:
        action = (
            "run"
            if args.yes
            else prompter.select(
                "Found .ralph/paths.json. What would you like to do?",
                [
                    Option("Run with this config", "run"),
                    Option("Edit configuration", "edit"),
                ],
                initial="run",
            )
        )
        loaded = resolve_paths_config(load_paths_file(paths_file), cwd)
        if action == "run":
            print(f"Loading config from {paths_file}")
            return loaded
        print("Edit configuration")
        existing = loaded
    else:
        print("Interactive configuration mode")

    if args.refs:
        refs = [
            os.path.normpath(os.path.join(cwd, ref.strip()))
            for ref in args.refs.split(",")
            if ref.strip()
        ]
    else:
        if not (Path(cwd) / RALPH_DIR_NAME).exists():
            choice = (
                "create"
                if args.yes
                else prompter.select(
                    f"No .ralph/ found in {cwd}",
                    [
                        Option("Create starter structure", "create"),
                        Option("Configure manually", "manual"),
                    ],
                    initial="create",
                )
            )
            if choice == "create":
                for created in create_starter_structure(cwd):
                    print(f"Created {os.path.relpath(created, cwd)}")
                print("1. Add source files to .ralph/refs/")
                print("2. Run cralph again (use --goal to generate the task list)")
                return None
        refs = _select_refs(cwd, prompter, existing.refs if existing else None)

    if args.output:
        output = os.path.normpath(os.path.join(cwd, args.output))
    else:
        output = _select_output(cwd, prompter, existing.output if existing else None)

    config = RalphConfig(refs=refs, output=output)

    if args.yes or prompter.confirm("Save configuration to .ralph/paths.json?"):
        save_paths_file(config, cwd, paths_file_location(cwd))
        print("Saved .ralph/paths.json")
    return config


def _select_refs(cwd: str, prompter: Prompter, defaults: list[str] | None) -> list[str]:
    all_dirs = list_directories_recursive(cwd, 3)
    if not all_dirs:
        raise ConfigurationError("No directories found to select from")
    current = defaults or []
    options = [
        Option(
            os.path.relpath(directory, cwd),
            directory,
            "current" if directory in current else None,
        )
        for directory in all_dirs
    ]
    return prompter.multiselect(
        "Select refs directories:",
        options,
        initial=[directory for directory in current if directory in all_dirs],
    )


def _select_output(cwd: str, prompter: Prompter, default_output: str | None) -> str:
    dirs = list_directories(cwd)
    default_dir: str | None = None
    if default_output is not None:
        default_dir = "." if default_output == cwd else os.path.relpath(default_output, cwd)

    options = [
        Option(
            "Current directory (.)",
            ".",
            "current" if default_dir == "." else "output here",
        ),
        *[Option(d, d, "current" if d == default_dir else None) for d in dirs],
    ]
    initial = default_dir if default_dir == "." or default_dir in dirs else "."
    selected = prompter.select("Select output directory:", options, initial=initial)
    if selected == ".":
        return cwd
    return os.path.normpath(os.path.join(cwd, selected))


def _generate_todo(
    goal: str,
    config: RalphConfig,
    runner: AgentRunner,
    timeout: float,
    token: CancellationToken,
) -> bool:
    todo_file = Path(config.output) / RALPH_DIR_NAME / TODO_FILE_NAME
    print("Generating TODO from goal...")
    generated = TodoTracker(todo_file).generate_from_goal(
        goal, runner, timeout=timeout, token=token
    )
    if generated:
        print(f"TODO written to {todo_file}")
    else:
        print("Could not generate a TODO from the goal; continuing with the current TODO.")
    return generated


if __name__ == "__main__":
    raise SystemExit(main())
