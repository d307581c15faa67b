"""Model catalog fetchers for each provider's ``/v1/models`` endpoint.

Every fetcher raises ``CatalogFetchError`` on transport or HTTP
failure; the model manager turns that into a static-only list.
A fetcher returns ``None`` when no credential is available, which
the manager treats as "no remote data".
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from ..errors import CatalogFetchError

logger = logging.getLogger(__name__)

OPENAI_MODELS_URL = "https://api.openai.com/v1/models"
ANTHROPIC_MODELS_URL = "https://api.anthropic.com/v1/models"
MISTRAL_MODELS_URL = "https://api.mistral.ai/v1/models"

ANTHROPIC_VERSION = "2023-06-01"

CODEX_FALLBACK_MODELS: tuple[str, ...] = (
    "gpt-5-codex",
    "o4",
    "o4-mini",
    "o3",
    "o1",
    "gpt-4.1",
    "gpt-4o",
    "gpt-4o-mini",
)

CLAUDE_FALLBACK_MODELS: tuple[str, ...] = (
    "claude-sonnet-4-5-20250929",
    "claude-opus-4-1-20250805",
    "claude-haiku-4-5-20251001",
)


def extract_model_ids(payload: Any) -> list[str]:
    """Pull ``data[*].id`` out of a models response, sorted and unique."""
    if not isinstance(payload, dict):
        return []
    data = payload.get("data")
    if not isinstance(data, list):
        return []
    ids = {
        entry["id"] for entry in data
        if isinstance(entry, dict) and isinstance(entry.get("id"), str) and entry["id"]
    }
    return sorted(ids)


async def fetch_model_ids(
    url: str,
    headers: dict[str, str],
    *,
    provider_name: str,
    timeout_seconds: float,
) -> list[str]:
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, headers=headers) as response:
                if response.status >= 400:
                    raise CatalogFetchError(
                        provider_name, f"model request failed ({response.status})",
                    )
                payload = await response.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise CatalogFetchError(provider_name, str(exc) or type(exc).__name__) from exc
    except ValueError as exc:
        raise CatalogFetchError(provider_name, f"invalid JSON: {exc}") from exc
    return extract_model_ids(payload)


async def fetch_openai_models(
    token: str | None, *, timeout_seconds: float = 5.0,
) -> list[str] | None:
    """Codex catalog: OpenAI models minus fine-tunes and deprecated ids."""
    if not token:
        return None
    ids = await fetch_model_ids(
        OPENAI_MODELS_URL,
        {"Authorization": f"Bearer {token}"},
        provider_name="codex",
        timeout_seconds=timeout_seconds,
    )
    return [m for m in ids if not m.startswith("ft:") and "deprecated" not in m]


async def fetch_anthropic_models(
    api_key: str | None, *, timeout_seconds: float = 5.0,
) -> list[str] | None:
    if not api_key:
        return None
    return await fetch_model_ids(
        ANTHROPIC_MODELS_URL,
        {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION},
        provider_name="claude",
        timeout_seconds=timeout_seconds,
    )


async def fetch_mistral_models(
    api_key: str | None, *, timeout_seconds: float = 5.0,
) -> list[str] | None:
    if not api_key:
        return None
    return await fetch_model_ids(
        MISTRAL_MODELS_URL,
        {"Authorization": f"Bearer {api_key}"},
        provider_name="mistral",
        timeout_seconds=timeout_seconds,
    )
