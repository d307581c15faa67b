"""Populate credential environment variables from files on disk.

Existing environment variables always win; files only fill gaps.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values

logger = logging.getLogger(__name__)

_CLAUDE_KEY_FIELDS = (
    "ANTHROPIC_API_KEY",
    "anthropic_api_key",
    "CLAUDE_API_KEY",
    "claude_api_key",
    "apiKey",
    "api_key",
    "token",
    "access_token",
)

_hydrated = False


def _set_if_missing(key: str, value: str | None) -> None:
    if not value or os.environ.get(key):
        return
    os.environ[key] = value


def load_env_file(path: Path) -> None:
    """Merge a ``.env`` file into ``os.environ`` without overriding."""
    if not path.is_file():
        return
    try:
        values = dotenv_values(path)
    except OSError as exc:
        logger.debug("Could not read env file %s: %s", path, exc)
        return
    for key, value in values.items():
        _set_if_missing(key, value)


def _extract_key(value: Any, keys: tuple[str, ...]) -> str | None:
    if not isinstance(value, dict):
        return None
    for key in keys:
        candidate = value.get(key)
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    nested = value.get("credentials") or value.get("auth") or value.get("account")
    if isinstance(nested, dict):
        return _extract_key(nested, keys)
    return None


def load_claude_credentials(path: Path) -> None:
    """Lift an API key out of the Claude CLI credentials file."""
    if not path.is_file():
        return
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.debug("Ignoring unreadable Claude credentials %s: %s", path, exc)
        return
    key = _extract_key(parsed, _CLAUDE_KEY_FIELDS)
    if not key:
        return
    _set_if_missing("ANTHROPIC_API_KEY", key)
    _set_if_missing("CLAUDE_API_KEY", key)


def hydrate_env(home: Path | None = None, *, force: bool = False) -> None:
    """Load ``~/.vibe/.env`` and Claude CLI credentials once per process."""
    global _hydrated
    if _hydrated and not force:
        return
    _hydrated = True
    home = home or Path.home()
    vibe_dir = Path(os.getenv("VIBE_CONFIG_DIR") or home / ".vibe")
    load_env_file(vibe_dir / ".env")
    load_claude_credentials(home / ".claude" / ".credentials.json")
