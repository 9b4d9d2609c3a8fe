"""Path resolution, validation, and the ``.ralph/paths.json`` store."""

from __future__ import annotations

import json
import logging
import os
import platform
from pathlib import Path

from .agent.models import PathsFile, RalphConfig
from .errors import ConfigFileNotFoundError, ConfigurationError, PathNotFoundError

LOGGER = logging.getLogger(__name__)

RALPH_DIR_NAME = ".ralph"
PATHS_FILE_NAME = "paths.json"

EXCLUDED_DIRS = frozenset(
    {
        "node_modules",
        "dist",
        "build",
        ".git",
        ".next",
        ".nuxt",
        ".output",
        "coverage",
        "__pycache__",
        "vendor",
        ".cache",
        ".venv",
        "venv",
    }
)

_SYSTEM_EXCLUDED_DIRS = {
    "Darwin": frozenset({"Library", "Photos Library.photoslibrary", "Photo Booth Library"}),
    "Linux": frozenset({"lost+found", "proc", "sys"}),
    "Windows": frozenset({"System Volume Information", "$Recycle.Bin", "Windows"}),
}


def resolve_paths_config(loaded: PathsFile, cwd: str) -> RalphConfig:
    """Turn stored (possibly relative) paths into absolute ones rooted at ``cwd``."""
    return RalphConfig(
        refs=[_resolve(cwd, ref) for ref in loaded.refs],
        output=_resolve(cwd, loaded.output),
    )


def to_stored_path(absolute_path: str, cwd: str) -> str:
    """Map an absolute path to the form written to the paths file.

    ``cwd`` itself becomes ``"."``; anything beneath it becomes ``"./<rest>"``.
    Paths outside ``cwd`` are kept absolute.
    """
    normalized_cwd = os.path.normpath(cwd)
    normalized = os.path.normpath(absolute_path)
    if normalized == normalized_cwd:
        return "."
    prefix = normalized_cwd.rstrip(os.sep) + os.sep
    if not normalized.startswith(prefix):
        return normalized
    return "./" + normalized[len(prefix) :].replace(os.sep, "/")


def validate_config(config: RalphConfig) -> None:
    """Raise ``PathNotFoundError`` for the first refs path that does not exist."""
    for ref in config.refs:
        if not os.path.exists(ref):
            raise PathNotFoundError(ref)
    # The output directory is created by the loop when missing.


def paths_file_location(cwd: str) -> Path:
    return Path(cwd) / RALPH_DIR_NAME / PATHS_FILE_NAME


def find_paths_file(cwd: str) -> Path | None:
    """Return the paths file under ``cwd`` if one exists."""
    candidate = paths_file_location(cwd)
    if candidate.is_file():
        return candidate
    return None


def load_paths_file(path: str | Path) -> PathsFile:
    file_path = Path(path)
    if not file_path.is_file():
        raise ConfigFileNotFoundError(str(file_path))
    with file_path.open("r", encoding="utf-8") as fh:
        parsed = json.load(fh)
    if not isinstance(parsed, dict):
        raise ConfigurationError(f"Paths file must contain a JSON object: {file_path}")
    for key in ("refs", "output"):
        if key not in parsed:
            raise ConfigurationError(f"Paths file is missing '{key}': {file_path}")
    if not isinstance(parsed["refs"], list):
        raise ConfigurationError(f"Paths file 'refs' must be a list: {file_path}")
    return PathsFile(refs=[str(ref) for ref in parsed["refs"]], output=str(parsed["output"]))


def save_paths_file(config: RalphConfig, cwd: str, path: str | Path) -> None:
    """Write ``config`` in stored form, replacing whatever was there."""
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "refs": [to_stored_path(ref, cwd) for ref in config.refs],
        "output": to_stored_path(config.output, cwd),
    }
    file_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    LOGGER.info("paths_file_saved", extra={"path": str(file_path)})


def create_starter_structure(cwd: str) -> list[Path]:
    """Create ``.ralph/``, ``.ralph/refs/`` and a default paths file.

    Returns the created paths in creation order.
    """
    ralph_dir = Path(cwd) / RALPH_DIR_NAME
    refs_dir = ralph_dir / "refs"
    refs_dir.mkdir(parents=True, exist_ok=True)

    paths_file = ralph_dir / PATHS_FILE_NAME
    paths_file.write_text(
        json.dumps({"refs": ["./.ralph/refs"], "output": "."}, indent=2),
        encoding="utf-8",
    )
    return [ralph_dir, refs_dir, paths_file]


def should_exclude_dir(name: str, *, system_name: str | None = None) -> bool:
    current_system = platform.system() if system_name is None else system_name
    if name in EXCLUDED_DIRS:
        return True
    return name in _SYSTEM_EXCLUDED_DIRS.get(current_system, frozenset())


def list_directories(base_path: str) -> list[str]:
    """List the visible child directory names of ``base_path``."""
    try:
        entries = sorted(os.scandir(base_path), key=lambda entry: entry.name)
    except PermissionError:
        return []
    return [
        entry.name
        for entry in entries
        if _is_dir(entry) and not entry.name.startswith(".")
    ]


def list_directories_recursive(base_path: str, max_depth: int = 3) -> list[str]:
    """List selectable directories beneath ``base_path`` as absolute paths, depth first."""
    results: list[str] = []

    def walk(directory: str, depth: int) -> None:
        if depth > max_depth:
            return
        try:
            entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
        except PermissionError:
            return
        for entry in entries:
            if not _is_dir(entry) or entry.name.startswith(".") or should_exclude_dir(entry.name):
                continue
            full_path = os.path.join(directory, entry.name)
            results.append(full_path)
            walk(full_path, depth + 1)

    walk(base_path, 1)
    return results


def _resolve(cwd: str, value: str) -> str:
    return os.path.normpath(os.path.join(cwd, value))


def _is_dir(entry: os.DirEntry[str]) -> bool:
    try:
        return entry.is_dir()
    except OSError:
        return False
