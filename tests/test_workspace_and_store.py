"""Tests for Workspace path confinement and the in-memory RunStore."""
from __future__ import annotations

import pytest

from luskui.engine.errors import PathEscapeError
from luskui.engine.run_store import RunStore
from luskui.engine.workspace import Workspace


class TestWorkspace:
    def test_resolve_strips_leading_slash(self, tmp_path):
        ws = Workspace(tmp_path)
        resolved = ws.resolve("/a/b.txt")
        assert resolved.rel == "a/b.txt"
        assert resolved.abs == tmp_path.resolve() / "a" / "b.txt"
        assert ws.resolve("").rel == ""

    @pytest.mark.parametrize("path", ["..", "../x", "a/../../x"])
    def test_escape_raises(self, tmp_path, path):
        with pytest.raises(PathEscapeError, match="Path escapes repository"):
            Workspace(tmp_path / "repo").resolve(path)

    def test_symlink_escape_raises(self, tmp_path):
        root = tmp_path / "repo"
        root.mkdir()
        (tmp_path / "secret.txt").write_text("s", encoding="utf-8")
        (root / "link").symlink_to(tmp_path / "secret.txt")
        with pytest.raises(PathEscapeError):
            Workspace(root).read_file("link")

    def test_save_read_list(self, tmp_path):
        ws = Workspace(tmp_path)
        assert ws.save_file("pkg/mod.py", "x = 1\n") == "pkg/mod.py"
        (tmp_path / "zz.txt").write_text("", encoding="utf-8")
        assert ws.read_file("pkg/mod.py") == ("pkg/mod.py", "x = 1\n")
        rel, entries = ws.list_dir()
        assert rel == ""
        assert entries == [{"name": "pkg", "dir": True}, {"name": "zz.txt", "dir": False}]

    def test_read_directory_fails(self, tmp_path):
        with pytest.raises(IsADirectoryError):
            Workspace(tmp_path).read_file("")

    @pytest.mark.asyncio
    async def test_apply_garbage_patch_reports_failure(self, tmp_path):
        result = await Workspace(tmp_path).apply_patch("this is not a patch")
        assert result.ok is False
        assert not list(tmp_path.glob(".luskui-*.patch"))


class TestRunStore:
    def test_lifecycle(self):
        store = RunStore()
        run_id = store.create("prompt")
        assert run_id in store
        assert len(store) == 1
        assert store.get(run_id).prompt == "prompt"
        assert store.get_last_diff(run_id) is None

        store.set_last_diff(run_id, "p1")
        store.set_last_diff(run_id, "p2")
        store.append_command(run_id, "$ ls")
        assert store.get_last_diff(run_id) == "p2"
        assert store.get_commands(run_id) == ["$ ls"]

        store.clear(run_id)
        assert run_id not in store
        assert store.get_commands(run_id) == []

    def test_unknown_run_is_noop(self):
        store = RunStore()
        store.set_last_diff("nope", "p")
        store.append_command("nope", "x")
        assert store.get("nope") is None
        assert len(store) == 0

    def test_commands_are_copied(self):
        store = RunStore()
        run_id = store.create("")
        store.get_commands(run_id).append("mutated")
        assert store.get_commands(run_id) == []

    def test_ids_are_unique(self):
        store = RunStore()
        assert len({store.create("") for _ in range(50)}) == 50
