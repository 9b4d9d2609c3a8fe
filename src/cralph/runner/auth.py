"""Agent authentication check with an on-disk cache."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path

from cralph.cancellation import CancellationToken
from cralph.errors import AgentTimeoutError

from .base import AgentRunner

LOGGER = logging.getLogger(__name__)

AUTH_PROBE_PROMPT = "Reply with just 'ok'"
AUTH_ERROR_MARKERS = (
    "authentication_error",
    "OAuth token has expired",
    "Please run /login",
    "401",
)
DEFAULT_AUTH_CACHE_TTL_SECONDS = 6 * 60 * 60


def default_auth_cache_path() -> Path:
    return Path.home() / ".cralph" / "auth-cache.json"


def is_auth_cache_valid(
    cache_path: Path,
    *,
    ttl_seconds: float = DEFAULT_AUTH_CACHE_TTL_SECONDS,
    now: float | None = None,
) -> bool:
    if not cache_path.is_file():
        return False
    try:
        with cache_path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return False
    if not isinstance(payload, dict):
        return False
    cached_at = payload.get("timestamp")
    if isinstance(cached_at, bool) or not isinstance(cached_at, (int, float)):
        return False
    current = time.time() if now is None else now
    return current - cached_at < ttl_seconds


def save_auth_cache(cache_path: Path, *, now: float | None = None) -> None:
    timestamp = time.time() if now is None else now
    try:
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(json.dumps({"timestamp": timestamp}), encoding="utf-8")
    except OSError as exc:
        LOGGER.warning("auth_cache_write_failed", extra={"path": str(cache_path), "error": str(exc)})


def check_agent_auth(
    runner: AgentRunner,
    *,
    cache_path: Path | None = None,
    ttl_seconds: float = DEFAULT_AUTH_CACHE_TTL_SECONDS,
    timeout: float = 30.0,
    token: CancellationToken | None = None,
) -> bool:
    """Return whether the agent CLI is usable, probing it only when the cache is stale."""
    effective_cache = cache_path or default_auth_cache_path()
    if is_auth_cache_valid(effective_cache, ttl_seconds=ttl_seconds):
        LOGGER.debug("auth_cache_hit", extra={"path": str(effective_cache)})
        return True

    try:
        result = runner.run_bounded(AUTH_PROBE_PROMPT, timeout=timeout, token=token)
    except AgentTimeoutError as exc:
        LOGGER.warning("auth_check_timeout", extra={"runner": runner.name, "timeout": exc.timeout})
        return False

    if not result.spawned:
        return False
    if any(marker in result.output for marker in AUTH_ERROR_MARKERS):
        LOGGER.warning("auth_check_rejected", extra={"runner": runner.name})
        return False
    if result.returncode != 0:
        return False

    save_auth_cache(effective_cache)
    return True
