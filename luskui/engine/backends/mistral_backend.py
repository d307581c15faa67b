"""Mistral Conversations API backend (SSE, client-side tool execution).

Unlike the other providers, Mistral stops streaming once it requests a
client-side function call and waits for the result to be appended to
the conversation. The translator is therefore a small state machine::

    AWAITING_STREAM --(function call args parse)--> AWAITING_TOOL
    AWAITING_TOOL   --(tool finished)-------------> RESUBMITTING
    RESUBMITTING    --(append stream opened)------> AWAITING_STREAM

and it ends when a native stream is exhausted without a pending call.
The wire protocol uses snake_case keys; camelCase variants are
accepted as well.
"""
from __future__ import annotations

import enum
import json
import logging
import os
from collections.abc import AsyncIterator, Callable, Iterator
from dataclasses import dataclass
from typing import Any, Protocol

from ..config import DEFAULT_MISTRAL_MODEL
from ..errors import MissingCredentialsError, ProviderError, ProviderUnavailableError
from ..workspace import Workspace
from .base import Backend, BackendConfig, EventStream
from .events import (
    BackendEvent,
    BackendTool,
    MessageEvent,
    StatusEvent,
    ThinkingEvent,
    ToolEndEvent,
    ToolStartEvent,
    ToolStderrEvent,
    ToolStdoutEvent,
)
from .mistral_tools import MistralToolExecutor, ToolExecutionResult, get_tool_definitions
from .model_manager import ModelManager
from .sse_client import SseResponse, open_sse_stream
from .translation import (
    RUNNING_STATUS,
    DiffCollector,
    ToolCallTracker,
    close_source,
    decode_json_object,
    format_tool_args,
)

logger = logging.getLogger(__name__)

MISTRAL_API_BASE = "https://api.mistral.ai/v1"
API_KEY_ENV_VARS = ("LUSKUI_MISTRAL_API_KEY", "MISTRAL_API_KEY")

_COMPLETION_ARGS = {"response_format": {"type": "text"}}


def get_mistral_api_key() -> str | None:
    for name in API_KEY_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    return None


def _field(payload: dict[str, Any], *names: str) -> Any:
    for name in names:
        value = payload.get(name)
        if value is not None:
            return value
    return None


def _str_field(payload: dict[str, Any], *names: str) -> str:
    value = _field(payload, *names)
    return value if isinstance(value, str) else ""


def content_events(content: Any) -> Iterator[BackendEvent]:
    """Map a Mistral content chunk (or list of chunks) to events."""
    if not content:
        return
    if isinstance(content, str):
        yield MessageEvent(text=content)
        return
    if isinstance(content, list):
        for chunk in content:
            yield from content_events(chunk)
        return
    if not isinstance(content, dict):
        return
    chunk_type = content.get("type")
    text = content.get("text")
    if chunk_type == "thinking" and isinstance(content.get("thinking"), list):
        for part in content["thinking"]:
            part_text = part.get("text") if isinstance(part, dict) else None
            if isinstance(part_text, str) and part_text:
                yield ThinkingEvent(text=part_text)
        return
    if isinstance(text, str) and text:
        yield MessageEvent(text=text)


def _error_detail(payload: dict[str, Any]) -> str:
    detail = _field(payload, "message", "info", "content")
    if detail is None:
        detail = payload
    if isinstance(detail, str):
        return detail
    try:
        return json.dumps(detail)
    except (TypeError, ValueError):
        return str(detail)


# ── Client ──


class ConversationClient(Protocol):
    async def start(self, prompt: str) -> AsyncIterator[dict[str, Any]]: ...

    async def append(
        self, conversation_id: str, tool_call_id: str, result: str,
    ) -> AsyncIterator[dict[str, Any]]: ...

    async def close(self) -> None: ...


async def _payloads(response: SseResponse) -> AsyncIterator[dict[str, Any]]:
    async for sse in response.events():
        payload = decode_json_object(sse.data)
        if payload is None:
            continue
        if "type" not in payload and sse.event != "message":
            payload["type"] = sse.event
        yield payload


class MistralClient:
    """Raw HTTP client for ``/v1/conversations``; one open stream at a time."""

    def __init__(self, api_key: str, model: str) -> None:
        self._api_key = api_key
        self._model = model
        self._response: SseResponse | None = None

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "text/event-stream",
        }

    async def _open(self, url: str, payload: dict[str, Any], label: str) -> AsyncIterator[dict[str, Any]]:
        await self.close()
        self._response = await open_sse_stream(
            url,
            headers=self._headers(),
            payload=payload,
            provider_name="mistral",
            label=label,
        )
        return _payloads(self._response)

    async def start(self, prompt: str) -> AsyncIterator[dict[str, Any]]:
        return await self._open(
            f"{MISTRAL_API_BASE}/conversations",
            {
                "inputs": [{
                    "object": "entry",
                    "type": "message.input",
                    "role": "user",
                    "content": prompt,
                }],
                "model": self._model,
                "tools": get_tool_definitions(),
                "completion_args": _COMPLETION_ARGS,
                "stream": True,
            },
            "Mistral request",
        )

    async def append(
        self, conversation_id: str, tool_call_id: str, result: str,
    ) -> AsyncIterator[dict[str, Any]]:
        return await self._open(
            f"{MISTRAL_API_BASE}/conversations/{conversation_id}",
            {
                "inputs": [{
                    "object": "entry",
                    "type": "function.result",
                    "tool_call_id": tool_call_id,
                    "result": result,
                }],
                "completion_args": _COMPLETION_ARGS,
                "stream": True,
            },
            "Mistral tool result submission",
        )

    async def close(self) -> None:
        response, self._response = self._response, None
        if response is not None:
            await response.close()


# ── Translator ──


class Phase(enum.Enum):
    AWAITING_STREAM = "awaiting_stream"
    AWAITING_TOOL = "awaiting_tool"
    RESUBMITTING = "resubmitting"


@dataclass
class _FunctionCall:
    tool_call_id: str
    name: str
    args: str = ""
    executed: bool = False

    def ready(self) -> bool:
        if self.executed or not self.args.strip():
            return False
        try:
            json.loads(self.args)
        except json.JSONDecodeError:
            return False
        return True


def _tool_result_events(result: ToolExecutionResult) -> Iterator[BackendEvent]:
    yield ToolStartEvent(tool=result.tool)
    if result.stdout:
        yield ToolStdoutEvent(text=result.stdout)
    if result.stderr:
        yield ToolStderrEvent(text=result.stderr)
    yield ToolEndEvent(tool=result.tool, exit_code=result.exit_code, status=result.status)


class MistralTranslator:
    """Per-run translation state for one Mistral conversation."""

    def __init__(
        self,
        client: ConversationClient,
        executor: MistralToolExecutor,
    ) -> None:
        self._client = client
        self._executor = executor
        self.phase = Phase.AWAITING_STREAM
        self.conversation_id: str | None = None
        self._server_tools = ToolCallTracker()
        self._calls: dict[str, _FunctionCall] = {}
        self._diffs = DiffCollector()

    async def translate(self, stream: AsyncIterator[dict[str, Any]]) -> AsyncIterator[BackendEvent]:
        current: AsyncIterator[dict[str, Any]] | None = stream
        try:
            yield StatusEvent(text=RUNNING_STATUS)
            while current is not None:
                self.phase = Phase.AWAITING_STREAM
                pending: tuple[str, ToolExecutionResult] | None = None

                async for payload in current:
                    for event in self._translate_payload(payload):
                        yield event
                    call = self._next_ready_call()
                    if call is None:
                        continue
                    self.phase = Phase.AWAITING_TOOL
                    logger.info("Mistral requested %s (%s)", call.name, call.tool_call_id)
                    result = await self._executor.execute(call.name, call.args)
                    for event in _tool_result_events(result):
                        yield event
                    pending = (call.tool_call_id, result)
                    break

                await close_source(current)
                current = None
                if pending is None:
                    break

                self.phase = Phase.RESUBMITTING
                if not self.conversation_id:
                    raise ProviderError("mistral", "Missing conversation id for tool response")
                tool_call_id, result = pending
                current = await self._client.append(self.conversation_id, tool_call_id, result.result)
                self._calls.pop(tool_call_id, None)
        finally:
            self._server_tools.clear()
            self._calls.clear()
            if current is not None:
                await close_source(current)

    def _next_ready_call(self) -> _FunctionCall | None:
        for call in self._calls.values():
            if call.ready():
                call.executed = True
                return call
        return None

    def _content(self, content: Any) -> Iterator[BackendEvent]:
        for event in content_events(content):
            if isinstance(event, MessageEvent):
                self._diffs.add_text(event.text)
            yield event

    def _translate_payload(self, payload: dict[str, Any]) -> Iterator[BackendEvent]:
        event_type = payload.get("type")
        if not isinstance(event_type, str):
            logger.debug("Skipping Mistral payload without type")
            return

        if event_type == "conversation.response.started":
            conversation_id = _field(payload, "conversation_id", "conversationId")
            if isinstance(conversation_id, str) and conversation_id:
                self.conversation_id = conversation_id
            self._diffs.reset_turn()
            yield StatusEvent(text=RUNNING_STATUS)

        elif event_type == "conversation.response.error":
            raise ProviderError("mistral", f"Mistral stream error: {_error_detail(payload)}")

        elif event_type == "message.output.delta":
            yield from self._content(payload.get("content"))

        elif event_type in ("tool.execution.started", "tool.execution.delta"):
            name = _str_field(payload, "name") or "tool"
            arguments = _field(payload, "arguments")
            call_id = _str_field(payload, "id") or f"{name}-{arguments or ''}"
            tool = BackendTool(name=name, args=format_tool_args(arguments))
            started = self._server_tools.start(call_id, tool)
            if started is not None:
                yield started
            elif arguments:
                self._server_tools.update(call_id, tool)

        elif event_type == "tool.execution.done":
            name = _str_field(payload, "name") or "tool"
            arguments = _field(payload, "arguments")
            call_id = _str_field(payload, "id") or f"{name}-{arguments or ''}"
            yield self._server_tools.finish(
                call_id, fallback=BackendTool(name=name), status="completed",
            )

        elif event_type == "function.call.delta":
            self._accumulate_call(payload)

        elif event_type == "conversation.response.done":
            yield from self._diffs.conclude_turn()

        elif payload.get("content"):
            yield from self._content(payload["content"])

    def _accumulate_call(self, payload: dict[str, Any]) -> None:
        tool_call_id = _str_field(payload, "tool_call_id", "toolCallId", "id")
        if not tool_call_id:
            logger.debug("Skipping function.call.delta without a call id")
            return
        incoming = _str_field(payload, "arguments")
        call = self._calls.get(tool_call_id)
        if call is None:
            call = _FunctionCall(tool_call_id=tool_call_id, name="function")
            self._calls[tool_call_id] = call
        name = _str_field(payload, "name")
        if name:
            call.name = name
        if call.args and not incoming.startswith(call.args):
            call.args += incoming
        else:
            call.args = incoming or call.args


# ── Backend ──


ClientFactory = Callable[[str, str], ConversationClient]


class MistralBackend(Backend):
    def __init__(
        self,
        config: BackendConfig,
        models: ModelManager,
        *,
        client_factory: ClientFactory = MistralClient,
        executor: MistralToolExecutor | None = None,
    ) -> None:
        super().__init__(config, models)
        self._client_factory = client_factory
        self._executor = executor or MistralToolExecutor(Workspace(config.working_directory))

    @property
    def name(self) -> str:
        return "mistral"

    async def stream_run(self, prompt: str) -> EventStream:
        if not self._config.network_access_enabled:
            raise ProviderUnavailableError("mistral", "requires network access")
        api_key = get_mistral_api_key()
        if not api_key:
            raise MissingCredentialsError(
                "mistral",
                "Missing Mistral API key (set LUSKUI_MISTRAL_API_KEY or MISTRAL_API_KEY)",
            )
        model = self._models.active_model or self._models.default_model or DEFAULT_MISTRAL_MODEL
        client = self._client_factory(api_key, model)
        first = await client.start(prompt)
        logger.info("Mistral conversation stream opened (model=%s)", model)
        translator = MistralTranslator(client, self._executor)
        return EventStream(translator.translate(first), on_close=client.close)
