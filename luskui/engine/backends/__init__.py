"""Backend abstraction over the three streaming agent providers."""
from .base import Backend, BackendConfig, EventStream
from .events import (
    BackendEvent,
    BackendTool,
    DiffEvent,
    DoneEvent,
    ErrorEvent,
    MessageEvent,
    StatusEvent,
    ThinkingEvent,
    ToolEndEvent,
    ToolStartEvent,
    ToolStderrEvent,
    ToolStdoutEvent,
    event_from_dict,
    event_to_dict,
)
from .model_manager import ModelManager, ModelSettings
from .registry import BACKEND_IDS, get_backend

__all__ = [
    "Backend",
    "BackendConfig",
    "EventStream",
    "ModelManager",
    "ModelSettings",
    "BACKEND_IDS",
    "get_backend",
    "BackendEvent",
    "BackendTool",
    "DiffEvent",
    "DoneEvent",
    "ErrorEvent",
    "MessageEvent",
    "StatusEvent",
    "ThinkingEvent",
    "ToolEndEvent",
    "ToolStartEvent",
    "ToolStderrEvent",
    "ToolStdoutEvent",
    "event_from_dict",
    "event_to_dict",
]
