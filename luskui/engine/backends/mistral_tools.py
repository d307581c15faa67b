"""Client-side tools offered to Mistral conversations.

Mistral hands function calls back to the client; each one runs here,
confined to the workspace, and its JSON-encoded result is appended to
the conversation.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from ..errors import PathEscapeError
from ..workspace import Workspace
from .events import BackendTool

logger = logging.getLogger(__name__)


@dataclass
class ToolExecutionResult:
    tool: BackendTool
    stdout: str
    stderr: str
    exit_code: int
    # JSON string sent back to the provider.
    result: str

    @property
    def status(self) -> str:
        return "completed" if self.exit_code == 0 else "failed"


TOOL_SPECS: list[dict[str, Any]] = [
    {
        "name": "filesystem.read",
        "description": "Read a text file from the repository workspace.",
        "parameters": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to the file to read (relative to repo)."},
            },
            "required": ["path"],
            "additionalProperties": False,
        },
    },
    {
        "name": "filesystem.write",
        "description": "Write a text file to the repository workspace.",
        "parameters": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to the file to write (relative to repo)."},
                "content": {"type": "string", "description": "File contents to write."},
            },
            "required": ["path", "content"],
            "additionalProperties": False,
        },
    },
    {
        "name": "filesystem.list",
        "description": "List entries inside a repository directory.",
        "parameters": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory path to list (relative to repo)."},
            },
            "required": ["path"],
            "additionalProperties": False,
        },
    },
    {
        "name": "shell",
        "description": "Run a shell command inside the repository workspace.",
        "parameters": {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Command to execute."},
            },
            "required": ["command"],
            "additionalProperties": False,
        },
    },
]


def get_tool_definitions() -> list[dict[str, Any]]:
    """Function tool definitions in the Conversations API shape."""
    return [
        {
            "type": "function",
            "function": {
                "name": spec["name"],
                "description": spec["description"],
                "parameters": spec["parameters"],
            },
        }
        for spec in TOOL_SPECS
    ]


def _encode(payload: dict[str, Any]) -> str:
    return json.dumps(payload, default=str)


def _failure(tool: BackendTool, message: str) -> ToolExecutionResult:
    return ToolExecutionResult(
        tool=tool,
        stdout="",
        stderr=message,
        exit_code=1,
        result=_encode({"ok": False, "error": message}),
    )


def _parse_args(raw: str) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class MistralToolExecutor:
    """Runs Mistral function calls against one workspace."""

    def __init__(self, workspace: Workspace) -> None:
        self._workspace = workspace

    async def execute(self, tool_name: str, raw_args: str) -> ToolExecutionResult:
        parsed = _parse_args(raw_args)
        if parsed is None and tool_name != "shell":
            return _failure(BackendTool(name=tool_name, args=[raw_args]), "Invalid tool arguments")
        args = parsed or {}

        if tool_name in ("filesystem.read", "filesystem.list", "filesystem.write"):
            target = args.get("path")
            if not isinstance(target, str) or not target:
                return _failure(BackendTool(name=tool_name), "Missing path argument")
            if tool_name == "filesystem.read":
                return self._read(target)
            if tool_name == "filesystem.list":
                return self._list(target)
            content = args.get("content")
            return self._write(target, content if isinstance(content, str) else "")

        if tool_name == "shell":
            command = args.get("command")
            if not isinstance(command, str):
                command = raw_args if parsed is None else ""
            if not command.strip():
                return _failure(BackendTool(name=tool_name), "Missing command argument")
            return await self._shell(command)

        return _failure(BackendTool(name=tool_name, args=[raw_args]), f"Unknown tool: {tool_name}")

    def _read(self, path: str) -> ToolExecutionResult:
        tool = BackendTool(name="filesystem.read", args=[path])
        try:
            rel, content = self._workspace.read_file(path)
        except (OSError, UnicodeDecodeError, PathEscapeError) as exc:
            return _failure(tool, str(exc))
        return ToolExecutionResult(
            tool=tool,
            stdout=content,
            stderr="",
            exit_code=0,
            result=_encode({"ok": True, "path": rel, "content": content}),
        )

    def _list(self, path: str) -> ToolExecutionResult:
        tool = BackendTool(name="filesystem.list", args=[path])
        try:
            rel, entries = self._workspace.list_dir(path)
        except (OSError, PathEscapeError) as exc:
            return _failure(tool, str(exc))
        return ToolExecutionResult(
            tool=tool,
            stdout=json.dumps(entries, indent=2),
            stderr="",
            exit_code=0,
            result=_encode({"ok": True, "path": rel, "entries": entries}),
        )

    def _write(self, path: str, content: str) -> ToolExecutionResult:
        tool = BackendTool(name="filesystem.write", args=[path])
        try:
            rel = self._workspace.save_file(path, content)
        except (OSError, PathEscapeError) as exc:
            return _failure(tool, str(exc))
        return ToolExecutionResult(
            tool=tool,
            stdout=f"Wrote {rel}\n",
            stderr="",
            exit_code=0,
            result=_encode({"ok": True, "path": rel}),
        )

    async def _shell(self, command: str) -> ToolExecutionResult:
        tool = BackendTool(name="shell", args=[command])
        try:
            # create_subprocess_exec passes args as array, no shell parsing here
            proc = await asyncio.create_subprocess_exec(
                "bash", "-c", command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._workspace.root),
            )
            out, err = await proc.communicate()
        except OSError as exc:
            return _failure(tool, str(exc))

        stdout = out.decode("utf-8", errors="replace")
        stderr = err.decode("utf-8", errors="replace")
        exit_code = proc.returncode if proc.returncode is not None else 0
        logger.debug("shell tool exited %d: %.80s", exit_code, command)
        return ToolExecutionResult(
            tool=tool,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            result=_encode({
                "ok": exit_code == 0,
                "exitCode": exit_code,
                "stdout": stdout,
                "stderr": stderr,
            }),
        )
