"""Tests for the Codex CLI backend: command line, JSONL translation, process lifecycle."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from luskui.engine.backends.base import BackendConfig, EventStream
from luskui.engine.backends.codex_backend import (
    CodexBackend,
    CodexClient,
    CodexRun,
    translate_codex_stream,
)
from luskui.engine.backends.events import (
    DiffEvent,
    MessageEvent,
    StatusEvent,
    ThinkingEvent,
    ToolEndEvent,
    ToolStartEvent,
    ToolStdoutEvent,
)
from luskui.engine.backends.model_manager import ModelManager
from luskui.engine.errors import ProviderError, ProviderUnavailableError

PATCH = "--- a/x\n+++ b/x\n@@ -1 +1 @@\n-a\n+b"


async def _source(events):
    for event in events:
        yield event


async def _collect(events):
    return [e async for e in translate_codex_stream(_source(events))]


def _command(event_type, output=None, **extra):
    item = {"id": "cmd-1", "type": "command_execution", "command": "ls -la"}
    if output is not None:
        item["aggregated_output"] = output
    item.update(extra)
    return {"type": event_type, "item": item}


@pytest.mark.asyncio
async def test_basic_turn():
    events = await _collect([
        {"type": "thread.started", "thread_id": "t1"},
        {"type": "turn.started"},
        {"type": "item.completed", "item": {"type": "reasoning", "text": "thinking..."}},
        {"type": "item.updated", "item": {"type": "agent_message", "text": "partial"}},
        {"type": "item.completed", "item": {"type": "agent_message", "text": "hi"}},
        {"type": "turn.completed", "usage": {}},
    ])
    assert events == [
        StatusEvent(text="Running…"),
        ThinkingEvent(text="thinking..."),
        MessageEvent(text="hi"),
    ]


@pytest.mark.asyncio
async def test_command_output_is_coalesced():
    events = await _collect([
        _command("item.started"),
        _command("item.updated", output="a"),
        _command("item.updated", output="ab"),
        _command("item.updated", output="ab"),
        _command("item.completed", output="abc", exit_code=0, status="completed"),
    ])
    assert isinstance(events[0], ToolStartEvent)
    assert events[0].tool.name == "ls -la"
    assert [e.text for e in events if isinstance(e, ToolStdoutEvent)] == ["a", "b", "c"]
    end = events[-1]
    assert isinstance(end, ToolEndEvent)
    assert end.exit_code == 0
    assert end.status == "completed"
    assert sum(isinstance(e, ToolStartEvent) for e in events) == 1


@pytest.mark.asyncio
async def test_file_change_suppresses_fenced_fallback():
    events = await _collect([
        {"type": "turn.started"},
        {"type": "item.completed", "item": {"type": "file_change", "changes": [{"patch": PATCH}]}},
        {"type": "item.completed", "item": {"type": "agent_message", "text": f"```diff\n{PATCH}\n```"}},
        {"type": "turn.completed"},
    ])
    assert [e.patch for e in events if isinstance(e, DiffEvent)] == [PATCH]


@pytest.mark.asyncio
async def test_fenced_diff_emitted_on_turn_completed():
    events = await _collect([
        {"type": "turn.started"},
        {"type": "item.completed", "item": {"type": "agent_message", "text": f"```diff\n{PATCH}\n```"}},
        {"type": "turn.completed"},
    ])
    assert isinstance(events[-1], DiffEvent)
    assert events[-1].patch == PATCH


@pytest.mark.asyncio
async def test_passthrough_of_normalized_events():
    events = await _collect([
        {"type": "message", "text": "direct"},
        {"type": "message", "text": 42},
        {"type": "diff", "diff": {"patch": PATCH}},
        {"type": "unknown.event"},
    ])
    assert events == [MessageEvent(text="direct"), DiffEvent(patch=PATCH)]


@pytest.mark.asyncio
async def test_turn_failed_raises():
    with pytest.raises(ProviderError, match="rate limited"):
        await _collect([
            {"type": "turn.started"},
            {"type": "turn.failed", "error": {"message": "rate limited"}},
        ])


@pytest.mark.asyncio
async def test_error_item_becomes_message():
    events = await _collect([{"type": "item.completed", "item": {"type": "error"}}])
    assert events == [MessageEvent(text="Agent error")]


class TestBuildCommand:
    def test_full_command(self):
        client = CodexClient(BackendConfig(working_directory="/repo", skip_git_repo_check=True))
        cmd = client.build_command(model="gpt-5-codex", effort="high")
        assert cmd[0] == "codex"
        assert cmd[1:3] == ["-c", 'model="gpt-5-codex"']
        assert 'model_reasoning_effort="high"' in cmd
        assert 'sandbox_mode="danger-full-access"' in cmd
        assert "sandbox_workspace_write.network_access=true" in cmd
        assert 'approval_policy="never"' in cmd
        exec_at = cmd.index("exec")
        assert cmd[exec_at:exec_at + 4] == ["exec", "--json", "-C", "/repo"]
        assert cmd[-2:] == ["--skip-git-repo-check", "-"]

    def test_defaults_omit_model_and_effort(self):
        client = CodexClient(BackendConfig(working_directory="/repo", network_access_enabled=False))
        cmd = client.build_command(model=None, effort=None)
        assert not any(arg.startswith("model") for arg in cmd)
        assert "sandbox_workspace_write.network_access=false" in cmd
        assert "--skip-git-repo-check" not in cmd


@pytest.mark.asyncio
async def test_missing_cli_raises_unavailable():
    client = CodexClient(BackendConfig(working_directory="/repo"), command="codex-not-installed-xyz")
    with pytest.raises(ProviderUnavailableError, match="Codex backend requires"):
        await client.run_streamed("hi", model=None, effort=None)


def _fake_proc(lines, returncode=0, stderr=b""):
    proc = MagicMock()
    proc.pid = 4242
    proc.returncode = None
    proc.stdout.readline = AsyncMock(side_effect=[*lines, b""])
    proc.stderr.read = AsyncMock(side_effect=[stderr, b""] if stderr else [b""])

    async def wait():
        proc.returncode = returncode
        return returncode

    proc.wait = wait
    return proc


@pytest.mark.asyncio
async def test_run_events_skip_garbage_and_report_exit_code():
    proc = _fake_proc(
        [b"not json\n", b"\n", json.dumps({"type": "turn.started"}).encode() + b"\n", b"[1]\n"],
        returncode=3,
        stderr=b"auth failed",
    )
    run = CodexRun(proc)
    seen = []
    with pytest.raises(ProviderError, match="Codex exited with code 3: auth failed"):
        async for event in run.events():
            seen.append(event)
    assert seen == [{"type": "turn.started"}]


@pytest.mark.asyncio
async def test_run_close_terminates_live_process():
    proc = _fake_proc([])
    run = CodexRun(proc)
    await run.close()
    proc.terminate.assert_called_once()
    assert proc.returncode == 0


@pytest.mark.asyncio
async def test_early_exit_before_stdin_reports_codex_error():
    proc = _fake_proc([], returncode=2, stderr=b"bad override")
    proc.stdin.write = MagicMock()
    proc.stdin.drain = AsyncMock(side_effect=BrokenPipeError())
    client = CodexClient(BackendConfig(working_directory="/repo"))

    with patch.object(CodexClient, "is_available", return_value=True), \
            patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        run = await client.run_streamed("hi", model="bogus", effort=None)

    assert isinstance(run, CodexRun)
    proc.stdin.close.assert_called_once()
    with pytest.raises(ProviderError, match="Codex exited with code 2: bad override"):
        async for _ in run.events():
            pass


@pytest.mark.asyncio
async def test_backend_passes_active_selection_and_wraps_stream():
    models = ModelManager(
        provider_name="codex",
        default_model="gpt-5-codex",
        fetch_models=AsyncMock(return_value=[]),
        supports_effort=True,
        default_effort="medium",
    )
    models.update_model_selection({"model": "o3", "effort": "HIGH"})

    run = MagicMock()
    run.events = MagicMock(return_value=_source([{"type": "turn.started"}]))
    run.close = AsyncMock()
    client = MagicMock()
    client.run_streamed = AsyncMock(return_value=run)

    backend = CodexBackend(BackendConfig(working_directory="/repo"), models, client=client)
    stream = await backend.stream_run("hello")

    client.run_streamed.assert_awaited_once_with("hello", model="o3", effort="high")
    assert isinstance(stream, EventStream)
    assert [e async for e in stream] == [StatusEvent(text="Running…")]
    run.close.assert_awaited_once()
    await stream.aclose()
    run.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_aclose_before_first_event_releases_process():
    run = MagicMock()
    run.events = MagicMock(return_value=_source([]))
    run.close = AsyncMock()
    client = MagicMock()
    client.run_streamed = AsyncMock(return_value=run)
    models = ModelManager(provider_name="codex", default_model=None, fetch_models=AsyncMock())

    backend = CodexBackend(BackendConfig(working_directory="/repo"), models, client=client)
    stream = await backend.stream_run("hi")
    await stream.aclose()
    run.close.assert_awaited_once()
    assert stream.closed
