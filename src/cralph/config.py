"""Environment-backed application configuration."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .runner.auth import DEFAULT_AUTH_CACHE_TTL_SECONDS, default_auth_cache_path

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from config files and environment variables."""

    agent: str
    agent_executable: str | None
    iteration_delay: float
    commit_progress: bool
    auth_cache_path: str
    auth_cache_ttl_seconds: float
    auth_timeout: float
    todo_timeout: float
    log_level: str

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()

        return cls(
            agent=(
                os.getenv("CRALPH_AGENT")
                or _to_optional_string(file_config.get("agent"))
                or "claude"
            ),
            agent_executable=(
                os.getenv("CRALPH_AGENT_EXECUTABLE")
                or _to_optional_string(file_config.get("agent_executable"))
            ),
            iteration_delay=_to_non_negative_float(
                os.getenv("CRALPH_ITERATION_DELAY") or file_config.get("iteration_delay"),
                default=2.0,
            ),
            commit_progress=_to_bool(
                os.getenv("CRALPH_COMMIT_PROGRESS"),
                default=bool(file_config.get("commit_progress", True)),
            ),
            auth_cache_path=(
                os.getenv("CRALPH_AUTH_CACHE")
                or _to_optional_string(file_config.get("auth_cache_path"))
                or str(default_auth_cache_path())
            ),
            auth_cache_ttl_seconds=_to_non_negative_float(
                os.getenv("CRALPH_AUTH_CACHE_TTL") or file_config.get("auth_cache_ttl_seconds"),
                default=float(DEFAULT_AUTH_CACHE_TTL_SECONDS),
            ),
            auth_timeout=_to_positive_float(
                os.getenv("CRALPH_AUTH_TIMEOUT") or file_config.get("auth_timeout"),
                default=30.0,
            ),
            todo_timeout=_to_positive_float(
                os.getenv("CRALPH_TODO_TIMEOUT") or file_config.get("todo_timeout"),
                default=90.0,
            ),
            log_level=_to_log_level(
                os.getenv("CRALPH_LOG_LEVEL") or _to_optional_string(file_config.get("log_level"))
            ),
        )

    @property
    def numeric_log_level(self) -> int:
        return int(getattr(logging, self.log_level))


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("CRALPH_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("cralph.config.json")
    local_override = _load_file_config("cralph.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _to_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _to_non_negative_float(value: object, *, default: float) -> float:
    parsed = _to_float(value)
    if parsed is None or parsed < 0:
        return default
    return parsed


def _to_positive_float(value: object, *, default: float) -> float:
    parsed = _to_float(value)
    if parsed is None or parsed <= 0:
        return default
    return parsed


def _to_log_level(value: str | None) -> str:
    if value is None:
        return "WARNING"
    normalized = value.strip().upper()
    return normalized if normalized in _LOG_LEVELS else "WARNING"
