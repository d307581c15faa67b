"""Readers for local TOML defaults written by other CLIs.

Only the handful of keys the server needs are extracted:

- ``~/.codex/config.toml``: ``model`` and ``model_reasoning_effort``
- ``.vibe/config.toml`` (repo first, then home): ``active_model`` and
  ``models`` (a list of ids, or a table whose entries are ids or
  sub-tables carrying an ``id``)

Missing or unparsable files read as empty; callers always fall back
to their own defaults.
"""
from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def read_toml(path: Path | str | None) -> dict[str, Any]:
    """Parse a TOML file, returning ``{}`` when absent or invalid."""
    if not path:
        return {}
    p = Path(path)
    if not p.is_file():
        return {}
    try:
        with p.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.debug("Ignoring unreadable TOML file %s: %s", p, exc)
        return {}


@dataclass
class CodexDefaults:
    model: str | None = None
    effort: str | None = None


def read_codex_defaults(config_path: Path | str | None) -> CodexDefaults:
    data = read_toml(config_path)
    model = data.get("model")
    effort = data.get("model_reasoning_effort")
    return CodexDefaults(
        model=model.strip() or None if isinstance(model, str) else None,
        effort=effort.strip() or None if isinstance(effort, str) else None,
    )


@dataclass
class VibeConfig:
    active_model: str | None = None
    models: list[str] = field(default_factory=list)


def _extract_model_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]
    if not isinstance(value, dict):
        return []
    entries: list[str] = []
    for key, entry in value.items():
        if isinstance(entry, str):
            if entry.strip():
                entries.append(entry.strip())
        elif isinstance(entry, dict):
            model_id = entry.get("id")
            if isinstance(model_id, str) and model_id.strip():
                entries.append(model_id.strip())
        elif key.strip():
            entries.append(key.strip())
    return entries


def find_vibe_config_path(repo_root: Path | str) -> Path | None:
    repo_config = Path(repo_root) / ".vibe" / "config.toml"
    if repo_config.is_file():
        return repo_config
    user_config = Path.home() / ".vibe" / "config.toml"
    return user_config if user_config.is_file() else None


def read_vibe_config(repo_root: Path | str) -> VibeConfig:
    data = read_toml(find_vibe_config_path(repo_root))
    active = data.get("active_model")
    return VibeConfig(
        active_model=active.strip() or None if isinstance(active, str) else None,
        models=_extract_model_list(data.get("models")),
    )
