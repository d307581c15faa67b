"""OpenAI Codex CLI backend.

Spawns ``codex exec --json`` per run, feeds the prompt over stdin and
translates the JSONL event stream it prints on stdout::

    thread.started                  -> (ignored)
    turn.started                    -> status "Running…"
    item.* reasoning                -> thinking
    item.completed agent_message    -> message (+ textual diff fallback)
    item.* command_execution        -> tool.start / tool.stdout / tool.end
    item.* file_change              -> diff
    item.* error                    -> message
    turn.completed                  -> concludes the turn's diffs
    turn.failed / error             -> ProviderError

Closing the event stream terminates the child process.
"""
from __future__ import annotations

import asyncio
import json
import logging
import shutil
from collections.abc import AsyncIterable, AsyncIterator, Iterator
from typing import Any

from ..errors import ProviderError, ProviderUnavailableError
from .base import Backend, BackendConfig, EventStream
from .events import (
    BACKEND_EVENT_TYPES,
    BackendEvent,
    BackendTool,
    DiffEvent,
    MessageEvent,
    StatusEvent,
    ThinkingEvent,
    event_from_dict,
)
from .model_manager import ModelManager
from .translation import (
    RUNNING_STATUS,
    DiffCollector,
    ToolCallTracker,
    close_source,
    error_message,
    first_structured_patch,
)

logger = logging.getLogger(__name__)

_ITEM_EVENTS = frozenset({"item.started", "item.updated", "item.completed"})
# JSONL lines can carry a command's whole aggregated output.
_STDOUT_LIMIT = 16 * 1024 * 1024
_TERMINATE_GRACE_SECONDS = 5.0


# ── Translator ──


def _translate_command(
    event_type: str,
    item: dict[str, Any],
    tracker: ToolCallTracker,
) -> Iterator[BackendEvent]:
    item_id = item.get("id")
    if item_id is None:
        logger.debug("Skipping command_execution item without id")
        return
    call_id = str(item_id)
    command = item.get("command")
    tool = BackendTool(name=command if isinstance(command, str) and command else "command")

    started = tracker.start(call_id, tool)
    if started is not None:
        yield started

    output = item.get("aggregated_output")
    if isinstance(output, str):
        chunk = tracker.output(call_id, output)
        if chunk is not None:
            yield chunk

    if event_type == "item.completed":
        exit_code = item.get("exit_code")
        status = item.get("status")
        yield tracker.finish(
            call_id,
            fallback=tool,
            exit_code=exit_code if isinstance(exit_code, int) else None,
            status=status if isinstance(status, str) else None,
        )


def _translate_item(
    event_type: str,
    item: dict[str, Any],
    tracker: ToolCallTracker,
    diffs: DiffCollector,
) -> Iterator[BackendEvent]:
    item_type = item.get("type")
    text = item.get("text")

    if item_type == "reasoning":
        if isinstance(text, str) and text:
            yield ThinkingEvent(text=text)
    elif item_type == "agent_message":
        if event_type == "item.completed" and isinstance(text, str) and text:
            diffs.add_text(text)
            yield MessageEvent(text=text)
    elif item_type == "command_execution":
        yield from _translate_command(event_type, item, tracker)
    elif item_type == "file_change":
        diff = diffs.structured(first_structured_patch(item))
        if diff is not None:
            yield diff
    elif item_type == "error":
        message = item.get("message")
        yield MessageEvent(text=message if isinstance(message, str) and message else "Agent error")


async def translate_codex_stream(
    events: AsyncIterable[Any],
) -> AsyncIterator[BackendEvent]:
    """Translate native Codex events into normalized events."""
    tracker = ToolCallTracker()
    diffs = DiffCollector()
    try:
        async for event in events:
            if not isinstance(event, dict):
                logger.debug("Skipping non-object Codex event: %r", event)
                continue
            event_type = event.get("type")

            if event_type == "thread.started":
                continue
            if event_type == "turn.started":
                diffs.reset_turn()
                yield StatusEvent(text=RUNNING_STATUS)
            elif event_type == "turn.completed":
                for diff in diffs.conclude_turn():
                    yield diff
            elif event_type == "turn.failed":
                raise ProviderError(
                    "codex", error_message(event.get("error"), "Codex turn failed"),
                )
            elif event_type == "error":
                raise ProviderError(
                    "codex",
                    error_message(
                        event.get("error") or event.get("message"), "Codex stream error",
                    ),
                )
            elif event_type in _ITEM_EVENTS:
                item = event.get("item")
                if not isinstance(item, dict):
                    logger.debug("Skipping %s without item payload", event_type)
                    continue
                for translated in _translate_item(event_type, item, tracker, diffs):
                    yield translated
            elif event_type in BACKEND_EVENT_TYPES:
                passthrough = event_from_dict(event)
                if passthrough is None:
                    logger.debug("Skipping malformed %s passthrough", event_type)
                elif isinstance(passthrough, DiffEvent):
                    diff = diffs.structured(passthrough.patch)
                    if diff is not None:
                        yield diff
                else:
                    yield passthrough
    finally:
        tracker.clear()
        await close_source(events)


# ── Client ──


class CodexRun:
    """One ``codex exec`` child process and its JSONL output."""

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self._proc = proc
        self._stderr: list[bytes] = []
        self._stderr_task = asyncio.ensure_future(self._drain_stderr())

    @property
    def pid(self) -> int:
        return self._proc.pid

    async def _drain_stderr(self) -> None:
        if self._proc.stderr is None:
            return
        while True:
            chunk = await self._proc.stderr.read(4096)
            if not chunk:
                break
            self._stderr.append(chunk)

    def stderr_text(self) -> str:
        return b"".join(self._stderr).decode("utf-8", errors="replace").strip()

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        assert self._proc.stdout is not None
        while True:
            line = await self._proc.stdout.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                logger.debug("Skipping non-JSON line from codex: %.120s", text)
                continue
            if isinstance(payload, dict):
                yield payload
            else:
                logger.debug("Skipping non-object JSON line from codex")

        returncode = await self._proc.wait()
        await self._stderr_task
        if returncode != 0:
            detail = self.stderr_text()
            message = f"Codex exited with code {returncode}"
            raise ProviderError("codex", f"{message}: {detail}" if detail else message)

    async def close(self) -> None:
        """Terminate the child if it is still running."""
        if self._proc.returncode is None:
            logger.info("Terminating codex exec (pid=%d)", self._proc.pid)
            try:
                self._proc.terminate()
                await asyncio.wait_for(self._proc.wait(), timeout=_TERMINATE_GRACE_SECONDS)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                logger.warning("codex exec did not exit; killing pid=%d", self._proc.pid)
                self._proc.kill()
                await self._proc.wait()
        if not self._stderr_task.done():
            self._stderr_task.cancel()


class CodexClient:
    """Builds and spawns ``codex exec --json`` commands."""

    def __init__(self, config: BackendConfig, command: str = "codex") -> None:
        self._config = config
        self._command = command

    def is_available(self) -> bool:
        return shutil.which(self._command) is not None

    def build_command(self, *, model: str | None, effort: str | None) -> list[str]:
        cmd = [self._command]
        if model:
            cmd.extend(["-c", f"model={json.dumps(model)}"])
        if effort:
            cmd.extend(["-c", f"model_reasoning_effort={json.dumps(effort)}"])
        cmd.extend(["-c", f"sandbox_mode={json.dumps(self._config.sandbox_mode)}"])
        cmd.extend([
            "-c",
            "sandbox_workspace_write.network_access="
            f"{'true' if self._config.network_access_enabled else 'false'}",
        ])
        cmd.extend(["-c", f"approval_policy={json.dumps(self._config.approval_policy)}"])
        cmd.extend(["exec", "--json"])
        cmd.extend(["-C", self._config.working_directory])
        if self._config.skip_git_repo_check:
            cmd.append("--skip-git-repo-check")
        # Prompt is read from stdin.
        cmd.append("-")
        return cmd

    async def run_streamed(
        self, prompt: str, *, model: str | None, effort: str | None,
    ) -> CodexRun:
        if not self.is_available():
            raise ProviderUnavailableError("codex", f"requires the '{self._command}' CLI on PATH")
        cmd = self.build_command(model=model, effort=effort)
        try:
            # create_subprocess_exec passes args as array, no shell
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._config.working_directory,
                limit=_STDOUT_LIMIT,
            )
        except FileNotFoundError as exc:
            raise ProviderUnavailableError(
                "codex", f"requires the '{self._command}' CLI on PATH",
            ) from exc

        logger.info("codex exec started (pid=%d, model=%s)", proc.pid, model or "(default)")
        run = CodexRun(proc)
        if proc.stdin is not None:
            try:
                proc.stdin.write(prompt.encode("utf-8"))
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                # The exit code and stderr are reported by events().
                logger.warning("codex exec closed stdin early (pid=%d)", proc.pid)
            finally:
                proc.stdin.close()
        return run


class CodexBackend(Backend):
    """Backend driven by the Codex CLI; the only one that honours effort."""

    def __init__(
        self,
        config: BackendConfig,
        models: ModelManager,
        *,
        client: CodexClient | None = None,
    ) -> None:
        super().__init__(config, models)
        self._client = client or CodexClient(config)

    @property
    def name(self) -> str:
        return "codex"

    async def stream_run(self, prompt: str) -> EventStream:
        run = await self._client.run_streamed(
            prompt,
            model=self._models.active_model,
            effort=self._models.active_effort,
        )
        return EventStream(translate_codex_stream(run.events()), on_close=run.close)
