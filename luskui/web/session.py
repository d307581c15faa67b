"""Streaming session controller: pumps one backend run into one SSE response.

The controller owns the run-store side effects (last diff, command
transcript) and the stream's lifecycle. A peer disconnect is not an
error: it sets ``cancelled``, releases the backend stream exactly once
and stops writing. Every other ending writes one terminal frame
(``done`` or ``error``), and the transport is always closed.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from aiohttp import web

from ..engine.backends.base import Backend
from ..engine.backends.events import (
    BackendEvent,
    DiffEvent,
    DoneEvent,
    ErrorEvent,
    ToolStartEvent,
    ToolStderrEvent,
    ToolStdoutEvent,
    event_to_dict,
)
from ..engine.run_log import log_run
from ..engine.run_store import RunStore

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


class SseTransport(Protocol):
    """Downstream side of a stream; ``send`` raises ConnectionResetError when the peer is gone."""

    @property
    def closing(self) -> bool: ...

    async def send(self, payload: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class AiohttpSseTransport:
    """``data: <json>\\n\\n`` frames over an aiohttp StreamResponse."""

    def __init__(self, request: web.Request, response: web.StreamResponse) -> None:
        self._request = request
        self._response = response

    @classmethod
    async def open(cls, request: web.Request) -> AiohttpSseTransport:
        response = web.StreamResponse(status=200, headers=SSE_HEADERS)
        await response.prepare(request)
        return cls(request, response)

    @property
    def response(self) -> web.StreamResponse:
        return self._response

    @property
    def closing(self) -> bool:
        transport = self._request.transport
        return transport is None or transport.is_closing()

    async def send(self, payload: dict[str, Any]) -> None:
        await self._response.write(f"data: {json.dumps(payload)}\n\n".encode("utf-8"))

    async def close(self) -> None:
        try:
            await self._response.write_eof()
        except ConnectionResetError:
            logger.debug("SSE peer already gone at close")


class StreamSession:
    """Drives one run's backend stream to completion or cancellation."""

    def __init__(
        self,
        run_id: str,
        prompt: str,
        backend: Backend,
        store: RunStore,
        transport: SseTransport,
    ) -> None:
        self.run_id = run_id
        self._prompt = prompt
        self._backend = backend
        self._store = store
        self._transport = transport
        self.cancelled = False
        self._released = False
        self._stream: Any = None

    async def run(self) -> None:
        log_run(self.run_id, "SSE stream opened")
        try:
            self._stream = await self._backend.stream_run(self._prompt)
            await self._pump()
            if not self.cancelled:
                log_run(self.run_id, f"{self._backend.name} run completed")
                await self._send(event_to_dict(DoneEvent()))
        except asyncio.CancelledError:
            self.cancelled = True
            log_run(self.run_id, "SSE handler cancelled")
            await self._release()
            raise
        except Exception as exc:
            if self.cancelled:
                logger.debug("Run %s failed after disconnect: %s", self.run_id, exc)
            else:
                log_run(self.run_id, f"{self._backend.name} run error", repr(exc))
                logger.debug("Run %s failed", self.run_id, exc_info=True)
                await self._send(event_to_dict(ErrorEvent(error=str(exc) or type(exc).__name__)))
        finally:
            await self._release()
            log_run(self.run_id, "SSE stream closing")
            await self._transport.close()

    async def _pump(self) -> None:
        stream = self._stream
        while True:
            if self._transport.closing:
                await self._cancel()
                return
            try:
                event = await stream.__anext__()
            except StopAsyncIteration:
                return
            if self._transport.closing:
                await self._cancel()
                return
            self._record(event)
            if not await self._send(event_to_dict(event)):
                await self._cancel()
                return

    def _record(self, event: BackendEvent) -> None:
        if isinstance(event, DiffEvent):
            self._store.set_last_diff(self.run_id, event.patch)
        elif isinstance(event, ToolStartEvent):
            self._store.append_command(self.run_id, f"$ {event.tool.name}")
        elif isinstance(event, (ToolStdoutEvent, ToolStderrEvent)):
            self._store.append_command(self.run_id, event.text)

    async def _send(self, payload: dict[str, Any]) -> bool:
        if self.cancelled:
            return False
        try:
            await self._transport.send(payload)
        except ConnectionResetError:
            return False
        return True

    async def _cancel(self) -> None:
        if not self.cancelled:
            self.cancelled = True
            log_run(self.run_id, f"HTTP client disconnected; stopping {self._backend.name} stream")
        await self._release()

    async def _release(self) -> None:
        if self._released or self._stream is None:
            return
        self._released = True
        try:
            await self._stream.aclose()
        except Exception as exc:
            logger.warning("Releasing stream for run %s failed: %s", self.run_id, exc)
