"""Normalized events emitted by every backend.

This closed set is the only vocabulary the transport and the run
store understand. ``done`` and ``error`` are emitted by the streaming
session itself, never by a backend.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class BackendTool:
    """A tool/command invocation as shown to the user."""
    name: str = "tool"
    args: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "args": list(self.args)}


@dataclass
class BackendEvent:
    """Base normalized event."""
    event_type: str = ""


@dataclass
class ThinkingEvent(BackendEvent):
    event_type: str = "thinking"
    text: str = ""


@dataclass
class MessageEvent(BackendEvent):
    event_type: str = "message"
    text: str = ""


@dataclass
class StatusEvent(BackendEvent):
    event_type: str = "status"
    text: str = ""


@dataclass
class DiffEvent(BackendEvent):
    event_type: str = "diff"
    patch: str = ""


@dataclass
class ToolStartEvent(BackendEvent):
    event_type: str = "tool.start"
    tool: BackendTool = field(default_factory=BackendTool)


@dataclass
class ToolStdoutEvent(BackendEvent):
    event_type: str = "tool.stdout"
    text: str = ""


@dataclass
class ToolStderrEvent(BackendEvent):
    event_type: str = "tool.stderr"
    text: str = ""


@dataclass
class ToolEndEvent(BackendEvent):
    event_type: str = "tool.end"
    tool: BackendTool = field(default_factory=BackendTool)
    exit_code: int | None = None
    status: str | None = None


@dataclass
class DoneEvent(BackendEvent):
    event_type: str = "done"


@dataclass
class ErrorEvent(BackendEvent):
    event_type: str = "error"
    error: str = ""


_TEXT_EVENTS: dict[str, type[BackendEvent]] = {
    "thinking": ThinkingEvent,
    "message": MessageEvent,
    "status": StatusEvent,
    "tool.stdout": ToolStdoutEvent,
    "tool.stderr": ToolStderrEvent,
}

# Types a backend may emit; "done" and "error" belong to the session.
BACKEND_EVENT_TYPES = frozenset(
    [*_TEXT_EVENTS, "diff", "tool.start", "tool.end"]
)


def event_to_dict(event: BackendEvent) -> dict[str, Any]:
    """Convert an event to its wire shape.

    Optional fields that are ``None`` are omitted; the patch of a
    ``diff`` event is nested under ``diff`` as the UI expects.
    """
    if isinstance(event, DiffEvent):
        return {"type": "diff", "diff": {"patch": event.patch}}
    if isinstance(event, (ToolStartEvent, ToolEndEvent)):
        d: dict[str, Any] = {"type": event.event_type, "tool": event.tool.to_dict()}
        if isinstance(event, ToolEndEvent):
            if event.exit_code is not None:
                d["exit_code"] = event.exit_code
            if event.status is not None:
                d["status"] = event.status
        return d
    d = {"type": event.event_type}
    for name in event.__dataclass_fields__:
        if name == "event_type":
            continue
        val = getattr(event, name)
        if val is not None:
            d[name] = val
    return d


def _tool_from_dict(value: Any) -> BackendTool | None:
    if not isinstance(value, dict):
        return None
    name = value.get("name")
    args = value.get("args", [])
    if not isinstance(name, str) or not isinstance(args, list):
        return None
    return BackendTool(name=name, args=[str(a) for a in args])


def event_from_dict(data: Any) -> BackendEvent | None:
    """Decode a wire-shaped dict into a backend event.

    Returns None unless *data* is a well-formed backend event, so
    callers can use it as a strict passthrough filter.
    """
    if not isinstance(data, dict):
        return None
    event_type = data.get("type")
    if event_type in _TEXT_EVENTS:
        text = data.get("text")
        if not isinstance(text, str):
            return None
        return _TEXT_EVENTS[event_type](text=text)
    if event_type == "diff":
        diff = data.get("diff")
        patch = diff.get("patch") if isinstance(diff, dict) else data.get("patch")
        return DiffEvent(patch=patch) if isinstance(patch, str) and patch else None
    if event_type in ("tool.start", "tool.end"):
        tool = _tool_from_dict(data.get("tool"))
        if tool is None:
            return None
        if event_type == "tool.start":
            return ToolStartEvent(tool=tool)
        exit_code = data.get("exit_code")
        status = data.get("status")
        return ToolEndEvent(
            tool=tool,
            exit_code=exit_code if isinstance(exit_code, int) else None,
            status=status if isinstance(status, str) else None,
        )
    return None
