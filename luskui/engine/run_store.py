"""Ephemeral in-memory store of runs.

A run is created by ``POST /api/send`` and mutated only by the
streaming session that drives it. Nothing is persisted; entries live
until cleared or the process exits.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field


@dataclass
class RunEntry:
    """State for one prompt submission."""
    prompt: str
    last_diff: str | None = None
    commands: list[str] = field(default_factory=list)


class RunStore:
    """Keyed table of runs. All operations are O(1)."""

    def __init__(self) -> None:
        self._runs: dict[str, RunEntry] = {}

    def create(self, prompt: str) -> str:
        run_id = str(uuid.uuid4())
        self._runs[run_id] = RunEntry(prompt=prompt)
        return run_id

    def get(self, run_id: str) -> RunEntry | None:
        return self._runs.get(run_id)

    def set_last_diff(self, run_id: str, patch: str) -> None:
        entry = self._runs.get(run_id)
        if entry is not None:
            entry.last_diff = patch

    def append_command(self, run_id: str, text: str) -> None:
        entry = self._runs.get(run_id)
        if entry is not None:
            entry.commands.append(text)

    def get_last_diff(self, run_id: str) -> str | None:
        entry = self._runs.get(run_id)
        return entry.last_diff if entry is not None else None

    def get_commands(self, run_id: str) -> list[str]:
        entry = self._runs.get(run_id)
        return list(entry.commands) if entry is not None else []

    def clear(self, run_id: str) -> None:
        self._runs.pop(run_id, None)

    def __contains__(self, run_id: object) -> bool:
        return run_id in self._runs

    def __len__(self) -> int:
        return len(self._runs)
