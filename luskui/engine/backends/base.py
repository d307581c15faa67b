"""Abstract base for streaming backends.

Each backend wraps one agent provider (Codex CLI, Anthropic Messages,
Mistral Conversations). The HTTP layer calls ``stream_run()`` once per
run and the model routes call ``get_model_settings()`` and
``update_model_selection()`` independently of any run.
"""
from __future__ import annotations

import abc
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .events import BackendEvent
from .model_manager import ModelManager, ModelSettings

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)


@dataclass
class BackendConfig:
    """Workspace configuration shared by every backend.

    The server runs inside an isolated container, so sandboxing and
    approvals are fixed to their permissive values; they are still
    passed through because the Codex CLI requires them.
    """
    working_directory: str
    skip_git_repo_check: bool = False
    sandbox_mode: str = "danger-full-access"
    network_access_enabled: bool = True
    approval_policy: str = "never"

    @classmethod
    def from_settings(cls, settings: Settings) -> BackendConfig:
        return cls(
            working_directory=str(settings.repo_root_abs),
            skip_git_repo_check=settings.skip_git_repo_check,
            network_access_enabled=settings.network_access_enabled,
        )

    def system_prompt(self) -> str:
        return "\n".join([
            f"Working directory: {self.working_directory}",
            f"Network access enabled: {'yes' if self.network_access_enabled else 'no'}",
            f"Sandbox mode: {self.sandbox_mode}",
            f"Approval policy: {self.approval_policy}",
        ])


class EventStream:
    """Normalized event sequence with an explicit release hook.

    ``aclose()`` stops the translator and then releases whatever the
    provider client holds open (child process, HTTP response). It is
    safe to call more than once and before the first item is read.
    """

    def __init__(
        self,
        events: AsyncIterator[BackendEvent],
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._events = events
        self._on_close = on_close
        self._closed = False

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> BackendEvent:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._events.__anext__()
        except StopAsyncIteration:
            await self.aclose()
            raise

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            aclose = getattr(self._events, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()


class Backend(abc.ABC):
    """Streaming/model-selection contract implemented by every provider.

    Implementations:
    - CodexBackend: ``codex exec --json`` child process (JSONL)
    - ClaudeBackend: Anthropic Messages API (SSE)
    - MistralBackend: Mistral Conversations API (SSE, client-side tools)
    """

    def __init__(self, config: BackendConfig, models: ModelManager) -> None:
        self._config = config
        self._models = models

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short backend name (e.g. 'codex', 'claude')."""

    @property
    def config(self) -> BackendConfig:
        return self._config

    @property
    def models(self) -> ModelManager:
        return self._models

    @abc.abstractmethod
    async def stream_run(self, prompt: str) -> EventStream:
        """Open a provider stream for *prompt*.

        Configuration problems (network disabled, CLI missing, no
        credentials) and HTTP failures while opening raise here,
        before any event is produced.
        """

    async def get_model_settings(self) -> ModelSettings:
        return await self._models.get_model_settings()

    def update_model_selection(self, payload: Any) -> None:
        self._models.update_model_selection(payload)
        logger.info(
            "%s model selection: model=%s effort=%s",
            self.name,
            self._models.active_model or "(default)",
            self._models.active_effort or "(default)",
        )
