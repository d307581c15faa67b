"""Claude credential resolution.

A direct API key always wins. Otherwise a Claude CLI OAuth access token
is exchanged for an API key through the CLI's key-minting endpoint;
the minted key is cached per token and concurrent mints are coalesced
into one request, the same way the model catalog is.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import os
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import aiohttp

from ..errors import ProviderError

logger = logging.getLogger(__name__)

OAUTH_API_KEY_URL = "https://api.anthropic.com/api/oauth/claude_cli/create_api_key"

API_KEY_ENV_VARS = ("LUSKUI_CLAUDE_API_KEY", "ANTHROPIC_API_KEY", "CLAUDE_API_KEY")
OAUTH_TOKEN_ENV_VARS = ("LUSKUI_CLAUDE_OAUTH_ACCESS_TOKEN", "CLAUDE_OAUTH_ACCESS_TOKEN")

_DEFAULT_OAUTH_CACHE_SECONDS = 300.0
_MINT_TIMEOUT = aiohttp.ClientTimeout(total=30)

MintKey = Callable[[str], Awaitable[str]]


def _first_env(names: tuple[str, ...]) -> str | None:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


def get_claude_api_key() -> str | None:
    return _first_env(API_KEY_ENV_VARS)


def get_claude_oauth_token() -> str | None:
    return _first_env(OAUTH_TOKEN_ENV_VARS)


def oauth_cache_seconds() -> float:
    raw = os.environ.get("LUSKUI_CLAUDE_OAUTH_CACHE_MS")
    if not raw:
        return _DEFAULT_OAUTH_CACHE_SECONDS
    try:
        return float(raw) / 1000.0
    except ValueError:
        logger.warning("Ignoring non-numeric LUSKUI_CLAUDE_OAUTH_CACHE_MS=%r", raw)
        return _DEFAULT_OAUTH_CACHE_SECONDS


async def mint_api_key(oauth_token: str) -> str:
    """Exchange an OAuth access token for a raw API key."""
    async with aiohttp.ClientSession(timeout=_MINT_TIMEOUT) as session:
        async with session.post(
            OAUTH_API_KEY_URL,
            headers={"Authorization": f"Bearer {oauth_token}"},
        ) as response:
            if response.status >= 400:
                body = await response.text()
                raise ProviderError(
                    "claude",
                    f"Claude OAuth request failed ({response.status}): {body}",
                    status=response.status,
                )
            payload = await response.json(content_type=None)

    if isinstance(payload, dict):
        for key in ("raw_key", "api_key"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    raise ProviderError("claude", "Claude OAuth response missing api key")


@dataclass
class _MintedKey:
    oauth_token: str
    api_key: str
    fetched_at: float


class ClaudeKeyResolver:
    """Resolves the API key used for each Claude run."""

    def __init__(
        self,
        *,
        mint: MintKey = mint_api_key,
        cache_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._mint = mint
        self._cache_seconds = cache_seconds
        self._clock = clock
        self._cached: _MintedKey | None = None
        self._inflight: dict[str, asyncio.Task[str]] = {}

    def _ttl(self) -> float:
        return self._cache_seconds if self._cache_seconds is not None else oauth_cache_seconds()

    def _reusable(self, oauth_token: str) -> bool:
        cached = self._cached
        if cached is None or cached.oauth_token != oauth_token:
            return False
        ttl = self._ttl()
        return ttl > 0 and self._clock() - cached.fetched_at < ttl

    async def resolve(self) -> str | None:
        api_key = get_claude_api_key()
        if api_key:
            return api_key
        oauth_token = get_claude_oauth_token()
        if not oauth_token:
            return None
        if self._reusable(oauth_token):
            assert self._cached is not None
            return self._cached.api_key
        # Concurrent callers with the same token share one mint.
        task = self._inflight.get(oauth_token)
        if task is None:
            task = asyncio.ensure_future(self._mint_and_cache(oauth_token))
            task.add_done_callback(functools.partial(self._clear_inflight, oauth_token))
            self._inflight[oauth_token] = task
        return await asyncio.shield(task)

    def _clear_inflight(self, oauth_token: str, task: asyncio.Task) -> None:
        if self._inflight.get(oauth_token) is task:
            del self._inflight[oauth_token]
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Claude OAuth key mint failed: %s", task.exception())

    async def _mint_and_cache(self, oauth_token: str) -> str:
        api_key = await self._mint(oauth_token)
        self._cached = _MintedKey(oauth_token, api_key, self._clock())
        logger.info("Minted Claude API key from OAuth token")
        return api_key
