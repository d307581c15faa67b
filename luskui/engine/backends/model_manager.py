"""Model/effort selection and a TTL-cached model catalog, one per backend.

Concurrent catalog refreshes are coalesced into one shared task, so N
callers arriving while a fetch is in flight trigger a single network
call and all observe the same list. A failed fetch is never surfaced:
the cache is filled with the static extras alone.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ..config import EFFORT_OPTIONS

logger = logging.getLogger(__name__)

FetchModels = Callable[[], Awaitable[list[str] | None]]


@dataclass
class ModelSettings:
    """Snapshot returned by ``GET /api/model``."""
    model: str | None
    default_model: str | None
    available_models: list[str] = field(default_factory=list)
    effort: str | None = None
    default_effort: str | None = None
    effort_options: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "defaultModel": self.default_model,
            "availableModels": list(self.available_models),
            "effort": self.effort,
            "defaultEffort": self.default_effort,
            "effortOptions": list(self.effort_options),
        }


@dataclass
class _CatalogCache:
    models: list[str]
    fetched_at: float


def merge_models(remote: Iterable[str], extras: Iterable[str]) -> list[str]:
    """De-duplicate and sort remote ids together with static extras."""
    seen = {m for m in remote if m}
    seen.update(m for m in extras if m)
    return sorted(seen)


class ModelManager:
    """Active selection plus catalog cache for a single backend."""

    def __init__(
        self,
        *,
        provider_name: str,
        default_model: str | None,
        fetch_models: FetchModels,
        supports_effort: bool = False,
        default_effort: str | None = None,
        effort_options: Iterable[str] = EFFORT_OPTIONS,
        extra_models: Iterable[str] = (),
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider_name = provider_name
        self._default_model = default_model or None
        self._fetch_models = fetch_models
        self._supports_effort = supports_effort
        self._effort_options = tuple(effort_options) if supports_effort else ()
        self._default_effort = default_effort if supports_effort else None
        self._extra_models = [m for m in extra_models if m]
        self._ttl = ttl_seconds
        self._clock = clock

        self._active_model = self._default_model
        self._active_effort = self._default_effort
        self._cache: _CatalogCache | None = None
        self._inflight: asyncio.Task[list[str]] | None = None

    @property
    def supports_effort(self) -> bool:
        return self._supports_effort

    @property
    def default_model(self) -> str | None:
        return self._default_model

    @property
    def active_model(self) -> str | None:
        return self._active_model

    @property
    def active_effort(self) -> str | None:
        return self._active_effort if self._supports_effort else None

    # ── Catalog ──

    async def get_available_models(self) -> list[str]:
        cache = self._cache
        if cache is not None and self._clock() - cache.fetched_at < self._ttl:
            return cache.models
        if self._inflight is None:
            task = asyncio.ensure_future(self._refresh())
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        # One caller going away must not cancel the fetch for the others.
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _refresh(self) -> list[str]:
        try:
            remote = await self._fetch_models()
        except Exception as exc:
            logger.warning(
                "Model catalog fetch failed for %s: %s", self._provider_name, exc,
            )
            remote = None
        models = merge_models(remote or [], self._extra_models)
        self._cache = _CatalogCache(models=models, fetched_at=self._clock())
        logger.debug(
            "Model catalog for %s refreshed (%d models)", self._provider_name, len(models),
        )
        return models

    def invalidate(self) -> None:
        self._cache = None

    # ── Selection ──

    def update_model_selection(self, payload: Any) -> None:
        """Apply a partial ``{model?, effort?}`` selection.

        ``None`` or ``""`` clears a field back to the provider default.
        Effort is lowercased and must be a known level; anything else
        leaves the previous value alone. Non-string values are ignored.
        """
        if not isinstance(payload, dict):
            return

        if "model" in payload:
            model = payload["model"]
            if model is None:
                self._active_model = None
            elif isinstance(model, str):
                self._active_model = model.strip() or None
            else:
                logger.debug("Ignoring malformed model selection: %r", model)

        if self._supports_effort and "effort" in payload:
            effort = payload["effort"]
            if effort is None:
                self._active_effort = None
            elif isinstance(effort, str):
                normalized = effort.strip().lower()
                if not normalized:
                    self._active_effort = None
                elif normalized in self._effort_options:
                    self._active_effort = normalized
                else:
                    logger.debug("Ignoring unknown effort %r", effort)
            else:
                logger.debug("Ignoring malformed effort selection: %r", effort)

    async def get_model_settings(self) -> ModelSettings:
        models = await self.get_available_models()
        return ModelSettings(
            model=self._active_model,
            default_model=self._default_model,
            available_models=list(models),
            effort=self.active_effort,
            default_effort=self._default_effort,
            effort_options=list(self._effort_options),
        )
