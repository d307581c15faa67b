"""Workspace file access confined to the repository root."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from .errors import PathEscapeError

logger = logging.getLogger(__name__)


@dataclass
class ResolvedPath:
    abs: Path
    rel: str


@dataclass
class ApplyResult:
    ok: bool
    output: str


class Workspace:
    """File operations rooted at a single directory.

    Every path argument is relative to the root; leading slashes are
    stripped and anything resolving outside the root raises
    ``PathEscapeError``.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, rel_path: str = "") -> ResolvedPath:
        normalized = rel_path.lstrip("/\\") if isinstance(rel_path, str) else ""
        target = (self._root / (normalized or ".")).resolve()
        try:
            relative = target.relative_to(self._root)
        except ValueError:
            raise PathEscapeError(rel_path) from None
        rel = relative.as_posix()
        return ResolvedPath(abs=target, rel="" if rel == "." else rel)

    def list_dir(self, rel_path: str = "") -> tuple[str, list[dict]]:
        """Return ``(rel, entries)`` with directories first, then by name."""
        resolved = self.resolve(rel_path)
        children = sorted(
            resolved.abs.iterdir(),
            key=lambda p: (not p.is_dir(), p.name),
        )
        entries = [{"name": p.name, "dir": p.is_dir()} for p in children]
        return resolved.rel, entries

    def read_file(self, rel_path: str) -> tuple[str, str]:
        resolved = self.resolve(rel_path)
        if resolved.abs.is_dir():
            raise IsADirectoryError("Path is a directory")
        return resolved.rel, resolved.abs.read_text(encoding="utf-8")

    def save_file(self, rel_path: str, content: str) -> str:
        resolved = self.resolve(rel_path)
        resolved.abs.parent.mkdir(parents=True, exist_ok=True)
        resolved.abs.write_text(content, encoding="utf-8")
        return resolved.rel

    async def apply_patch(self, patch: str) -> ApplyResult:
        """Apply *patch* with ``git apply --index`` inside the root."""
        tmp = self._root / f".luskui-{uuid.uuid4()}.patch"
        try:
            tmp.write_text(patch, encoding="utf-8")
            # create_subprocess_exec passes args as array, no shell
            proc = await asyncio.create_subprocess_exec(
                "git", "apply", "--index", str(tmp),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=str(self._root),
            )
            stdout, _ = await proc.communicate()
            output = stdout.decode("utf-8", errors="replace")
            return ApplyResult(ok=proc.returncode == 0, output=output)
        except OSError as exc:
            logger.warning("git apply failed to start: %s", exc)
            return ApplyResult(ok=False, output=str(exc))
        finally:
            try:
                tmp.unlink()
            except FileNotFoundError:
                pass
