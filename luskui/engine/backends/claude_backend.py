"""Anthropic Messages API backend (direct HTTP, SSE streaming).

Tool-use blocks are tracked by content block index; their JSON input
arrives as ``input_json_delta`` fragments and is rendered onto the
``tool.end`` descriptor once the block stops.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

import aiohttp

from ..config import DEFAULT_CLAUDE_MODEL
from ..errors import MissingCredentialsError, ProviderError, ProviderUnavailableError
from .base import Backend, BackendConfig, EventStream
from .claude_auth import ClaudeKeyResolver
from .events import (
    BackendEvent,
    BackendTool,
    MessageEvent,
    StatusEvent,
    ThinkingEvent,
)
from .model_manager import ModelManager
from .sse_client import SseResponse, open_sse_stream
from .translation import (
    RUNNING_STATUS,
    DiffCollector,
    SseEvent,
    ToolCallTracker,
    close_source,
    decode_json_object,
    error_message,
    format_tool_args_for_display,
)

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
MAX_TOKENS = 2048

_MISSING_CREDENTIALS = (
    "Missing Claude credentials (set LUSKUI_CLAUDE_API_KEY, ANTHROPIC_API_KEY, "
    "CLAUDE_API_KEY, or authenticate with the Claude CLI)."
)
_REAUTHENTICATE = (
    "Please re-authenticate with the Claude CLI "
    "(run `claude` and follow the login flow)."
)


def _block_index(payload: dict[str, Any]) -> str:
    index = payload.get("index", 0)
    return str(index if isinstance(index, int) else 0)


def _text_field(container: Any, *keys: str) -> str:
    if not isinstance(container, dict):
        return ""
    for key in keys:
        value = container.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _render_tool_input(fragments: list[str]) -> list[str]:
    raw = "".join(fragments)
    if not raw.strip():
        return []
    try:
        return format_tool_args_for_display(json.loads(raw))
    except json.JSONDecodeError:
        return [raw]


async def translate_claude_stream(
    events: AsyncIterable[SseEvent],
) -> AsyncIterator[BackendEvent]:
    """Translate Anthropic SSE events into normalized events."""
    tracker = ToolCallTracker()
    tool_input: dict[str, list[str]] = {}
    diffs = DiffCollector()
    try:
        yield StatusEvent(text=RUNNING_STATUS)
        async for sse in events:
            if not sse.data or sse.data == "[DONE]":
                continue
            payload = decode_json_object(sse.data)
            if payload is None:
                continue
            event_name = sse.event
            if event_name == "message":
                event_name = payload.get("type") or event_name

            if event_name == "content_block_start":
                key = _block_index(payload)
                block = payload.get("content_block")
                if not isinstance(block, dict):
                    continue
                block_type = block.get("type")
                if block_type == "tool_use":
                    name = block.get("name")
                    tool = BackendTool(
                        name=name if isinstance(name, str) and name else "tool",
                        args=format_tool_args_for_display(block.get("input")),
                    )
                    tool_input[key] = []
                    started = tracker.start(key, tool)
                    if started is not None:
                        yield started
                elif block_type == "text":
                    text = _text_field(block, "text")
                    if text:
                        diffs.add_text(text)
                        yield MessageEvent(text=text)
                elif block_type == "thinking":
                    text = _text_field(block, "thinking", "text")
                    if text:
                        yield ThinkingEvent(text=text)

            elif event_name == "content_block_delta":
                key = _block_index(payload)
                delta = payload.get("delta")
                if not isinstance(delta, dict):
                    continue
                delta_type = delta.get("type")
                if delta_type == "text_delta":
                    text = _text_field(delta, "text")
                    if text:
                        diffs.add_text(text)
                        yield MessageEvent(text=text)
                elif delta_type == "thinking_delta":
                    text = _text_field(delta, "thinking", "text")
                    if text:
                        yield ThinkingEvent(text=text)
                elif delta_type == "input_json_delta":
                    fragment = delta.get("partial_json")
                    if isinstance(fragment, str) and key in tool_input:
                        tool_input[key].append(fragment)

            elif event_name == "content_block_stop":
                key = _block_index(payload)
                if key in tracker:
                    end = tracker.finish(key, status="completed")
                    args = _render_tool_input(tool_input.pop(key, []))
                    if args:
                        end.tool = BackendTool(name=end.tool.name, args=args)
                    yield end

            elif event_name == "message_stop":
                for diff in diffs.conclude_turn():
                    yield diff

            elif event_name == "error":
                raise ProviderError("claude", error_message(payload.get("error"), "Claude error"))
    finally:
        tracker.clear()
        await close_source(events)


class ClaudeClient:
    """Opens streaming Messages API requests."""

    def __init__(self, config: BackendConfig) -> None:
        self._system_prompt = config.system_prompt()

    async def open_stream(self, prompt: str, *, model: str, api_key: str) -> SseResponse:
        return await open_sse_stream(
            ANTHROPIC_API_URL,
            headers={
                "content-type": "application/json",
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            payload={
                "model": model,
                "max_tokens": MAX_TOKENS,
                "stream": True,
                "system": self._system_prompt,
                "messages": [{"role": "user", "content": prompt}],
            },
            provider_name="claude",
            label="Claude request",
        )


class ClaudeBackend(Backend):
    def __init__(
        self,
        config: BackendConfig,
        models: ModelManager,
        *,
        client: ClaudeClient | None = None,
        key_resolver: ClaudeKeyResolver | None = None,
    ) -> None:
        super().__init__(config, models)
        self._client = client or ClaudeClient(config)
        self._keys = key_resolver or ClaudeKeyResolver()

    @property
    def name(self) -> str:
        return "claude"

    async def _resolve_api_key(self) -> str:
        try:
            api_key = await self._keys.resolve()
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise MissingCredentialsError("claude", f"{exc}\n{_REAUTHENTICATE}") from exc
        if not api_key:
            raise MissingCredentialsError("claude", _MISSING_CREDENTIALS)
        return api_key

    async def stream_run(self, prompt: str) -> EventStream:
        if not self._config.network_access_enabled:
            raise ProviderUnavailableError("claude", "requires network access")
        api_key = await self._resolve_api_key()
        model = self._models.active_model or self._models.default_model or DEFAULT_CLAUDE_MODEL
        response = await self._client.open_stream(prompt, model=model, api_key=api_key)
        logger.info("Claude stream opened (model=%s)", model)
        return EventStream(translate_claude_stream(response.events()), on_close=response.close)
