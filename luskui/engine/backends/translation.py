"""Translation helpers shared by every backend.

- ``ToolCallTracker``: per-run tool call state keyed by the provider's
  call id. Emits ``tool.start`` once, only the unseen suffix of a
  cumulative output string as ``tool.stdout``, and ``tool.end`` when
  the call completes, after which the call's state is dropped.
- ``DiffCollector``: structured patches reported by the provider plus
  a fallback that scans assistant text for fenced ``diff``/``patch``
  blocks when a turn concludes. Once a structured diff fires in a
  turn the textual fallback is suppressed for that turn, and the same
  patch is never reported twice within a turn.
- ``iter_sse_events``: Server-Sent Events framing for HTTP providers.
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from .events import (
    BackendTool,
    DiffEvent,
    ToolEndEvent,
    ToolStartEvent,
    ToolStdoutEvent,
)

logger = logging.getLogger(__name__)

RUNNING_STATUS = "Running…"

_FENCED_DIFF_RE = re.compile(r"```(?:diff|patch)[ \t]*\r?\n(.*?)```", re.DOTALL)


def extract_diffs(text: str) -> list[str]:
    """Return the bodies of fenced ``diff``/``patch`` blocks in *text*."""
    matches: list[str] = []
    for match in _FENCED_DIFF_RE.finditer(text):
        body = match.group(1).strip("\r\n").rstrip()
        if body:
            matches.append(body)
    return matches


def format_tool_args(raw: Any) -> list[str]:
    """Format raw tool arguments (often a JSON string) for display."""
    if raw is None:
        return []
    if isinstance(raw, str):
        trimmed = raw.strip()
        if not trimmed:
            return []
        try:
            return format_tool_args(json.loads(trimmed))
        except json.JSONDecodeError:
            return [raw]
    if isinstance(raw, (bool, int, float)):
        return [json.dumps(raw)]
    if isinstance(raw, (list, dict)):
        try:
            return [json.dumps(raw, indent=2)]
        except (TypeError, ValueError):
            return [str(raw)]
    return [str(raw)]


def format_tool_args_for_display(value: Any) -> list[str]:
    """Render tool input as ``key=<json>`` entries for object inputs."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (bool, int, float)):
        return [json.dumps(value)]
    if isinstance(value, list):
        return [str(entry) for entry in value]
    if isinstance(value, dict):
        return [f"{key}={json.dumps(entry)}" for key, entry in value.items()]
    return [str(value)]


def error_message(error: Any, fallback: str) -> str:
    """Pull a human-readable message out of a provider error payload."""
    if isinstance(error, str) and error:
        return error
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    return fallback


# ── Tool calls ──


@dataclass
class _ToolCallState:
    tool: BackendTool
    flushed: int = 0


class ToolCallTracker:
    """Open tool calls for one run, keyed by provider call id."""

    def __init__(self) -> None:
        self._calls: dict[str, _ToolCallState] = {}

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    def get(self, call_id: str) -> BackendTool | None:
        state = self._calls.get(call_id)
        return state.tool if state is not None else None

    def start(self, call_id: str, tool: BackendTool) -> ToolStartEvent | None:
        """Register a call; returns ``tool.start`` only on first sight."""
        if call_id in self._calls:
            return None
        self._calls[call_id] = _ToolCallState(tool=tool)
        return ToolStartEvent(tool=tool)

    def update(self, call_id: str, tool: BackendTool) -> None:
        """Replace the descriptor reported when the call ends."""
        state = self._calls.get(call_id)
        if state is not None:
            state.tool = tool

    def output(self, call_id: str, cumulative: str) -> ToolStdoutEvent | None:
        """Emit the part of *cumulative* not yet flushed for this call."""
        state = self._calls.get(call_id)
        if state is None or len(cumulative) <= state.flushed:
            return None
        chunk = cumulative[state.flushed:]
        state.flushed = len(cumulative)
        return ToolStdoutEvent(text=chunk)

    def finish(
        self,
        call_id: str,
        *,
        fallback: BackendTool | None = None,
        exit_code: int | None = None,
        status: str | None = None,
    ) -> ToolEndEvent:
        """Close a call and forget its state."""
        state = self._calls.pop(call_id, None)
        tool = state.tool if state is not None else (fallback or BackendTool())
        return ToolEndEvent(tool=tool, exit_code=exit_code, status=status)

    def clear(self) -> None:
        self._calls.clear()


# ── Diffs ──


@dataclass
class DiffCollector:
    """Per-turn diff discovery with a single de-duplication rule."""

    _text: list[str] = field(default_factory=list)
    _reported: set[str] = field(default_factory=set)
    _structured_fired: bool = False

    def structured(self, patch: str | None) -> DiffEvent | None:
        if not patch or patch in self._reported:
            return None
        self._reported.add(patch)
        self._structured_fired = True
        return DiffEvent(patch=patch)

    def add_text(self, text: str) -> None:
        if text:
            self._text.append(text)

    def conclude_turn(self) -> list[DiffEvent]:
        """Return fallback diffs for the finished turn and reset."""
        events: list[DiffEvent] = []
        if not self._structured_fired:
            for patch in extract_diffs("".join(self._text)):
                if patch in self._reported:
                    continue
                self._reported.add(patch)
                events.append(DiffEvent(patch=patch))
        self.reset_turn()
        return events

    def reset_turn(self) -> None:
        self._text.clear()
        self._reported.clear()
        self._structured_fired = False


def first_structured_patch(item: dict[str, Any]) -> str | None:
    """Find a patch on a provider item: direct, nested, or in ``changes``."""
    patch = item.get("patch")
    if isinstance(patch, str) and patch:
        return patch
    diff = item.get("diff")
    if isinstance(diff, dict):
        nested = diff.get("patch")
        if isinstance(nested, str) and nested:
            return nested
    changes = item.get("changes")
    if isinstance(changes, list):
        for change in changes:
            if isinstance(change, dict):
                candidate = change.get("patch")
                if isinstance(candidate, str) and candidate:
                    return candidate
    return None


# ── Server-Sent Events ──


@dataclass
class SseEvent:
    event: str
    data: str


def parse_sse_block(raw: str) -> SseEvent | None:
    event_name = "message"
    data_lines: list[str] = []
    for line in raw.split("\n"):
        line = line.rstrip("\r")
        if not line or line.startswith(":"):
            continue
        if line.startswith("event:"):
            event_name = line[6:].strip() or event_name
        elif line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
    if not data_lines:
        return None
    return SseEvent(event=event_name, data="\n".join(data_lines))


async def iter_sse_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[SseEvent]:
    """Split a byte stream into SSE events on blank-line boundaries.

    Bytes are buffered until a whole block has arrived, so a multi-byte
    character split across reads is decoded intact.
    """
    buffer = b""
    async for chunk in chunks:
        buffer = (buffer + chunk).replace(b"\r\n", b"\n")
        boundary = buffer.find(b"\n\n")
        while boundary != -1:
            raw, buffer = buffer[:boundary], buffer[boundary + 2:]
            event = parse_sse_block(raw.decode("utf-8", errors="replace"))
            if event is not None:
                yield event
            boundary = buffer.find(b"\n\n")
    if buffer.strip():
        event = parse_sse_block(buffer.decode("utf-8", errors="replace"))
        if event is not None:
            yield event


async def close_source(source: object) -> None:
    """Close a native event source if it is an async generator."""
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()


def decode_json_object(data: str) -> dict[str, Any] | None:
    """Decode one JSON payload, returning None for anything but an object."""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping undecodable provider payload: %.120s", data)
        return None
    return payload if isinstance(payload, dict) else None
