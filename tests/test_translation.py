"""Tests for the shared translation helpers (tool tracking, diffs, SSE framing)."""
from __future__ import annotations

import pytest

from luskui.engine.backends.events import BackendTool, DiffEvent, ToolStdoutEvent
from luskui.engine.backends.translation import (
    DiffCollector,
    ToolCallTracker,
    extract_diffs,
    first_structured_patch,
    format_tool_args,
    format_tool_args_for_display,
    iter_sse_events,
)

PATCH = "diff --git a/x b/x\n--- a/x\n+++ b/x\n@@ -1 +1 @@\n-a\n+b"


class TestExtractDiffs:
    def test_single_fenced_block(self):
        text = f"Here you go:\n```diff\n{PATCH}\n```\nDone."
        assert extract_diffs(text) == [PATCH]

    def test_patch_fence_and_crlf(self):
        text = "```patch\r\n-a\r\n+b\r\n```"
        assert extract_diffs(text) == ["-a\r\n+b"]

    def test_ignores_other_languages(self):
        assert extract_diffs("```python\nprint(1)\n```") == []

    def test_empty_block_dropped(self):
        assert extract_diffs("```diff\n\n```") == []


class TestFormatToolArgs:
    def test_json_object_pretty_printed(self):
        assert format_tool_args('{"path": "a.txt"}') == ['{\n  "path": "a.txt"\n}']

    def test_non_json_string_kept(self):
        assert format_tool_args("ls -la") == ["ls -la"]

    def test_primitives_and_none(self):
        assert format_tool_args(None) == []
        assert format_tool_args("   ") == []
        assert format_tool_args(3) == ["3"]
        assert format_tool_args(True) == ["true"]

    def test_display_form_for_objects(self):
        assert format_tool_args_for_display({"path": "a", "n": 2}) == ['path="a"', "n=2"]
        assert format_tool_args_for_display(["x", 1]) == ["x", "1"]


class TestToolCallTracker:
    def test_start_once(self):
        tracker = ToolCallTracker()
        tool = BackendTool(name="ls")
        assert tracker.start("1", tool) is not None
        assert tracker.start("1", tool) is None
        assert "1" in tracker

    def test_output_emits_unseen_suffix_only(self):
        tracker = ToolCallTracker()
        tracker.start("1", BackendTool(name="ls"))
        first = tracker.output("1", "ab")
        assert isinstance(first, ToolStdoutEvent)
        assert first.text == "ab"
        assert tracker.output("1", "ab") is None
        assert tracker.output("1", "abc").text == "c"

    def test_output_for_unknown_call_is_ignored(self):
        assert ToolCallTracker().output("nope", "text") is None

    def test_finish_drops_state(self):
        tracker = ToolCallTracker()
        tool = BackendTool(name="ls", args=["-la"])
        tracker.start("1", tool)
        end = tracker.finish("1", exit_code=0, status="completed")
        assert end.tool is tool
        assert end.exit_code == 0
        assert end.status == "completed"
        assert "1" not in tracker
        assert len(tracker) == 0

    def test_finish_unknown_uses_fallback(self):
        fallback = BackendTool(name="cmd")
        assert ToolCallTracker().finish("x", fallback=fallback).tool is fallback

    def test_update_replaces_descriptor_without_touching_original(self):
        tracker = ToolCallTracker()
        original = BackendTool(name="search")
        tracker.start("1", original)
        tracker.update("1", BackendTool(name="search", args=["q"]))
        end = tracker.finish("1")
        assert end.tool.args == ["q"]
        assert original.args == []


class TestDiffCollector:
    def test_text_fallback_on_conclude(self):
        diffs = DiffCollector()
        diffs.add_text("```diff\n")
        diffs.add_text(f"{PATCH}\n```")
        events = diffs.conclude_turn()
        assert [e.patch for e in events] == [PATCH]
        assert diffs.conclude_turn() == []

    def test_structured_suppresses_text_fallback(self):
        diffs = DiffCollector()
        assert isinstance(diffs.structured("structured patch"), DiffEvent)
        diffs.add_text(f"```diff\n{PATCH}\n```")
        assert diffs.conclude_turn() == []

    def test_same_patch_reported_once_per_turn(self):
        diffs = DiffCollector()
        assert diffs.structured(PATCH) is not None
        assert diffs.structured(PATCH) is None
        diffs.reset_turn()
        assert diffs.structured(PATCH) is not None

    def test_duplicate_fenced_blocks_collapse(self):
        diffs = DiffCollector()
        diffs.add_text(f"```diff\n{PATCH}\n```\nagain\n```diff\n{PATCH}\n```")
        assert len(diffs.conclude_turn()) == 1


def test_first_structured_patch_variants():
    assert first_structured_patch({"patch": "p1"}) == "p1"
    assert first_structured_patch({"diff": {"patch": "p2"}}) == "p2"
    assert first_structured_patch({"changes": [{"path": "a"}, {"patch": "p3"}]}) == "p3"
    assert first_structured_patch({"changes": []}) is None


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


@pytest.mark.asyncio
async def test_iter_sse_events_splits_across_chunks():
    events = [
        e async for e in iter_sse_events(_chunks(
            b"event: content_block_delta\r\ndata: {\"a\"",
            b": 1}\r\n\r\n: keepalive\n\ndata: tail",
        ))
    ]
    assert [(e.event, e.data) for e in events] == [
        ("content_block_delta", '{"a": 1}'),
        ("message", "tail"),
    ]


@pytest.mark.asyncio
async def test_iter_sse_events_keeps_multibyte_split_across_chunks():
    payload = 'data: {"text": "café … done"}\n\n'.encode("utf-8")
    split = payload.index("…".encode("utf-8")) + 1
    events = [e async for e in iter_sse_events(_chunks(payload[:split], payload[split:]))]
    assert [e.data for e in events] == ['{"text": "café … done"}']


@pytest.mark.asyncio
async def test_iter_sse_events_crlf_split_across_chunks():
    events = [e async for e in iter_sse_events(_chunks(b"data: one\r\n\r", b"\ndata: two\r\n\r\n"))]
    assert [e.data for e in events] == ["one", "two"]
