"""Backend registry: maps backend ids to fully wired Backend instances."""
from __future__ import annotations

import logging
from collections.abc import Callable

from ..config import Settings
from ..errors import ConfigurationError
from .base import Backend, BackendConfig
from .catalog import (
    CLAUDE_FALLBACK_MODELS,
    CODEX_FALLBACK_MODELS,
    fetch_anthropic_models,
    fetch_mistral_models,
    fetch_openai_models,
)
from .claude_auth import get_claude_api_key
from .codex_auth import get_openai_token
from .model_manager import ModelManager

logger = logging.getLogger(__name__)

BACKEND_IDS = ("codex", "claude", "mistral")


def _extras(settings: Settings, name: str, *defaults: str | None) -> list[str]:
    return [m for m in (*defaults, *settings.extra_models.get(name, [])) if m]


def create_codex_backend(settings: Settings) -> Backend:
    from .codex_backend import CodexBackend

    async def fetch() -> list[str] | None:
        return await fetch_openai_models(
            get_openai_token(settings.codex_auth_path),
            timeout_seconds=settings.model_fetch_timeout_seconds,
        )

    models = ModelManager(
        provider_name="codex",
        default_model=settings.codex_model,
        fetch_models=fetch,
        supports_effort=True,
        default_effort=settings.codex_effort,
        extra_models=_extras(settings, "codex", *CODEX_FALLBACK_MODELS, settings.codex_model),
        ttl_seconds=settings.model_cache_ttl_seconds,
    )
    return CodexBackend(BackendConfig.from_settings(settings), models)


def create_claude_backend(settings: Settings) -> Backend:
    from .claude_backend import ClaudeBackend

    async def fetch() -> list[str] | None:
        return await fetch_anthropic_models(
            get_claude_api_key(),
            timeout_seconds=settings.model_fetch_timeout_seconds,
        )

    models = ModelManager(
        provider_name="claude",
        default_model=settings.claude_model,
        fetch_models=fetch,
        extra_models=_extras(settings, "claude", *CLAUDE_FALLBACK_MODELS, settings.claude_model),
        ttl_seconds=settings.model_cache_ttl_seconds,
    )
    return ClaudeBackend(BackendConfig.from_settings(settings), models)


def create_mistral_backend(settings: Settings) -> Backend:
    from .mistral_backend import MistralBackend, get_mistral_api_key

    models = ModelManager(
        provider_name="mistral",
        default_model=settings.mistral_model,
        fetch_models=lambda: fetch_mistral_models(
            get_mistral_api_key(),
            timeout_seconds=settings.model_fetch_timeout_seconds,
        ),
        extra_models=_extras(settings, "mistral", settings.mistral_model),
        ttl_seconds=settings.model_cache_ttl_seconds,
    )
    return MistralBackend(BackendConfig.from_settings(settings), models)


_FACTORIES: dict[str, Callable[[Settings], Backend]] = {
    "codex": create_codex_backend,
    "claude": create_claude_backend,
    "mistral": create_mistral_backend,
}


def get_backend(settings: Settings, backend_id: str | None = None) -> Backend:
    """Build the backend named by *backend_id* (default: ``settings.backend``).

    Raises ``ConfigurationError`` for an unknown id.
    """
    requested = (backend_id or settings.backend or "codex").strip().lower()
    factory = _FACTORIES.get(requested)
    if factory is None:
        raise ConfigurationError(f"Unsupported backend: {requested}")
    backend = factory(settings)
    logger.info(
        "Backend selected: %s (repo=%s, default model=%s)",
        backend.name, backend.config.working_directory,
        backend.models.default_model or "(provider default)",
    )
    return backend
