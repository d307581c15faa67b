"""Streaming POST requests against SSE provider endpoints (aiohttp)."""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import aiohttp

from ..errors import ProviderError
from .translation import SseEvent, iter_sse_events

logger = logging.getLogger(__name__)

# Streams run as long as the agent works; only connecting is bounded.
STREAM_TIMEOUT = aiohttp.ClientTimeout(total=None, sock_connect=30)


class SseResponse:
    """An open SSE response and the client session that owns it."""

    def __init__(self, session: aiohttp.ClientSession, response: aiohttp.ClientResponse) -> None:
        self._session = session
        self._response = response

    @property
    def status(self) -> int:
        return self._response.status

    def events(self) -> AsyncIterator[SseEvent]:
        return iter_sse_events(self._response.content.iter_any())

    async def close(self) -> None:
        self._response.release()
        await self._session.close()


async def open_sse_stream(
    url: str,
    *,
    headers: dict[str, str],
    payload: dict[str, Any],
    provider_name: str,
    label: str,
) -> SseResponse:
    """POST *payload* and return the streaming response.

    Any HTTP status >= 400 raises ``ProviderError`` carrying the
    status and the response body, after the connection is released.
    """
    session = aiohttp.ClientSession(timeout=STREAM_TIMEOUT)
    try:
        response = await session.post(url, json=payload, headers=headers)
    except aiohttp.ClientError as exc:
        await session.close()
        raise ProviderError(provider_name, f"{label} failed: {exc}") from exc
    except BaseException:
        await session.close()
        raise

    if response.status >= 400:
        try:
            body = await response.text()
        except aiohttp.ClientError:
            body = ""
        finally:
            response.release()
            await session.close()
        logger.warning("%s failed (%d): %.200s", label, response.status, body)
        raise ProviderError(
            provider_name,
            f"{label} failed ({response.status}): {body}",
            status=response.status,
        )
    return SseResponse(session, response)
