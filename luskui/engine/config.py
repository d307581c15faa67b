"""Server configuration loaded from YAML and environment variables.

Resolution order for every setting, highest first:

1. ``LUSKUI_*`` (and a few unprefixed) environment variables
2. ``.luskui/luskui.yaml`` in the repo root, or an explicit ``--config``
3. Local CLI defaults (``~/.codex/config.toml``, ``.vibe/config.toml``)
4. Built-in defaults

Example YAML::

    server:
      host: 127.0.0.1
      port: 7860
    backend: claude
    models:
      cache_ttl_seconds: 600
      fetch_timeout_seconds: 5
      codex: {model: gpt-5-codex, effort: medium}
      claude: {model: claude-sonnet-4-5-20250929}
      mistral: {model: mistral-large-latest}
      extra:
        claude: [claude-opus-4-1]
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .local_config import read_codex_defaults, read_vibe_config

logger = logging.getLogger(__name__)

EFFORT_OPTIONS: tuple[str, ...] = ("minimal", "low", "medium", "high", "xhigh")

DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_MISTRAL_MODEL = "mistral-large-latest"

_TRUTHY = {"1", "true", "yes", "on"}


def normalize_effort(value: Any) -> str | None:
    """Lowercase *value* and return it if it is a known effort level."""
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized if normalized in EFFORT_OPTIONS else None


def load_yaml_settings(path: Path | str | None) -> dict[str, Any]:
    """Load the optional YAML settings file.

    Returns ``{}`` if the file is absent. A file that exists but does
    not parse to a mapping is logged and ignored.
    """
    if not path:
        return {}
    p = Path(path)
    if not p.is_file():
        return {}
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to read settings file %s: %s", p, exc)
        return {}
    if not isinstance(raw, dict):
        logger.warning("Settings file %s is not a mapping; ignoring", p)
        return {}
    return raw


def _section(data: dict[str, Any], *keys: str) -> dict[str, Any]:
    current: Any = data
    for key in keys:
        current = current.get(key) if isinstance(current, dict) else None
    return current if isinstance(current, dict) else {}


def _env_float(name: str, fallback: float, scale: float = 1.0) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return fallback
    try:
        return float(raw) * scale
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return fallback


def _yaml_float(section: dict[str, Any], key: str, fallback: float) -> float:
    raw = section.get(key)
    if raw is None:
        return fallback
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s=%r in settings file", key, raw)
        return fallback


@dataclass
class Settings:
    """Process-wide settings, resolved once at startup."""

    repo_root: str = "/workspace"
    host: str = "0.0.0.0"
    port: int = 7860
    log_path: str = str(Path.home() / ".luskui" / "logs" / "luskui.log")
    log_level: str = "INFO"

    backend: str = "codex"

    codex_model: str | None = None
    codex_effort: str | None = None
    claude_model: str = DEFAULT_CLAUDE_MODEL
    mistral_model: str = DEFAULT_MISTRAL_MODEL
    # Static model ids merged into each backend's fetched catalog.
    extra_models: dict[str, list[str]] = field(default_factory=dict)

    model_cache_ttl_seconds: float = 300.0
    model_fetch_timeout_seconds: float = 5.0

    skip_git_repo_check: bool = False
    network_access_enabled: bool = True

    codex_config_path: str = str(Path.home() / ".codex" / "config.toml")
    codex_auth_path: str = str(Path.home() / ".codex" / "auth.json")

    @property
    def repo_root_abs(self) -> Path:
        return Path(self.repo_root).resolve()

    @classmethod
    def from_env(cls, yaml_data: dict[str, Any] | None = None) -> Settings:
        """Build settings from environment variables over optional YAML."""
        data = yaml_data or {}
        server = _section(data, "server")
        models = _section(data, "models")

        lusk_vars = sorted(k for k in os.environ if k.startswith("LUSKUI_"))
        if lusk_vars:
            logger.info("Settings.from_env: LUSKUI_* overrides: %s", ", ".join(lusk_vars))

        repo_root = os.getenv("REPO_ROOT") or server.get("repo_root") or cls.repo_root
        codex_config_path = os.getenv("CODEX_CONFIG") or cls.codex_config_path
        codex_defaults = read_codex_defaults(codex_config_path)
        vibe = read_vibe_config(repo_root)

        codex_section = _section(models, "codex")
        codex_model = (
            os.getenv("LUSKUI_MODEL")
            or codex_section.get("model")
            or codex_defaults.model
            or None
        )
        codex_effort = normalize_effort(
            os.getenv("LUSKUI_EFFORT")
            or codex_section.get("effort")
            or codex_defaults.effort
        )
        claude_model = (
            os.getenv("LUSKUI_CLAUDE_MODEL")
            or _section(models, "claude").get("model")
            or cls.claude_model
        )
        mistral_model = (
            os.getenv("LUSKUI_MISTRAL_MODEL")
            or _section(models, "mistral").get("model")
            or vibe.active_model
            or cls.mistral_model
        )

        extra_models: dict[str, list[str]] = {}
        for name, entries in _section(models, "extra").items():
            if isinstance(entries, list):
                extra_models[str(name)] = [str(e) for e in entries if e]
        if vibe.models:
            extra_models.setdefault("mistral", [])
            extra_models["mistral"].extend(vibe.models)

        ttl = _env_float(
            "LUSKUI_MODEL_CACHE_MS",
            _yaml_float(models, "cache_ttl_seconds", cls.model_cache_ttl_seconds),
            scale=0.001,
        )
        fetch_timeout = _env_float(
            "LUSKUI_MODEL_FETCH_TIMEOUT_MS",
            _yaml_float(models, "fetch_timeout_seconds", cls.model_fetch_timeout_seconds),
            scale=0.001,
        )

        repo_root_abs = Path(repo_root).resolve()
        skip_git = (
            os.getenv("LUSKUI_SKIP_GIT_CHECK", "").lower() in _TRUTHY
            or not (repo_root_abs / ".git").exists()
        )

        try:
            port = int(os.getenv("PORT") or server.get("port") or cls.port)
        except ValueError:
            logger.warning("Ignoring invalid PORT; using %d", cls.port)
            port = cls.port

        settings = cls(
            repo_root=str(repo_root),
            host=os.getenv("HOST") or server.get("host") or cls.host,
            port=port,
            log_path=os.getenv("LUSKUI_LOG") or server.get("log") or cls.log_path,
            log_level=(os.getenv("LUSKUI_LOG_LEVEL") or server.get("log_level") or cls.log_level).upper(),
            backend=(os.getenv("LUSKUI_BACKEND") or data.get("backend") or cls.backend).lower(),
            codex_model=codex_model,
            codex_effort=codex_effort,
            claude_model=claude_model,
            mistral_model=mistral_model,
            extra_models=extra_models,
            model_cache_ttl_seconds=ttl,
            model_fetch_timeout_seconds=fetch_timeout,
            skip_git_repo_check=skip_git,
            codex_config_path=codex_config_path,
            codex_auth_path=os.getenv("CODEX_AUTH") or cls.codex_auth_path,
        )
        logger.info(
            "Settings.from_env: backend=%s repo=%s codex_model=%s effort=%s",
            settings.backend, settings.repo_root,
            settings.codex_model or "(default)", settings.codex_effort or "(default)",
        )
        return settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Resolve settings, auto-discovering ``.luskui/luskui.yaml``."""
    if config_path is None:
        repo_root = os.getenv("REPO_ROOT") or Settings.repo_root
        candidate = Path(repo_root) / ".luskui" / "luskui.yaml"
        config_path = candidate if candidate.is_file() else None
    return Settings.from_env(load_yaml_settings(config_path))
