"""HTTP + SSE server for LuskUI.

Thin adapter: run state lives in the RunStore, provider logic in the
Backend, and each ``/api/stream/{id}`` request is handed to a
StreamSession. This class only handles routing, request parsing and
JSON responses.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any

from aiohttp import web

from ..engine.backends.base import Backend
from ..engine.config import Settings
from ..engine.errors import PathEscapeError
from ..engine.run_log import log_run, preview
from ..engine.run_store import RunStore
from ..engine.workspace import Workspace
from .session import AiohttpSseTransport, StreamSession

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent.parent / "static"


async def _read_json(request: web.Request) -> Any:
    if not request.can_read_body:
        return {}
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.debug("Ignoring malformed JSON body on %s", request.path)
        return {}


class LuskServer:
    """Single-backend, single-workspace HTTP server."""

    def __init__(
        self,
        settings: Settings,
        backend: Backend,
        *,
        store: RunStore | None = None,
        workspace: Workspace | None = None,
        static_dir: Path | None = STATIC_DIR,
    ) -> None:
        self._settings = settings
        self._backend = backend
        self._store = store or RunStore()
        self._workspace = workspace or Workspace(settings.repo_root_abs)
        self._static_dir = static_dir
        self._started_at = time.time()
        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._setup_routes()
        logger.info(
            "LuskServer init host=%s port=%s repo=%s backend=%s pid=%s",
            settings.host, settings.port, self._workspace.root,
            backend.name, os.getpid(),
        )

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def store(self) -> RunStore:
        return self._store

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-luskui-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except web.HTTPException:
            raise
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception(
                "HTTP %s %s req=%s failed duration_ms=%.1f",
                request.method, request.path_qs, req_id, elapsed_ms,
            )
            raise

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/", self._handle_index)
        r.add_get("/health", self._handle_health)
        # Runs
        r.add_post("/api/send", self._handle_send)
        r.add_get("/api/stream/{id}", self._handle_stream)
        r.add_get("/api/cmd-log/{id}", self._handle_cmd_log)
        r.add_get("/api/last-diff/{id}", self._handle_last_diff)
        # Model selection
        r.add_get("/api/model", self._handle_get_model)
        r.add_post("/api/model", self._handle_set_model)
        # Workspace files
        r.add_get("/api/list", self._handle_list)
        r.add_get("/api/read", self._handle_read)
        r.add_post("/api/save", self._handle_save)
        r.add_post("/api/apply/{id}", self._handle_apply)
        if self._static_dir is not None and self._static_dir.is_dir():
            r.add_static("/static", self._static_dir)

    # ── HTTP handlers ──

    async def _handle_index(self, request: web.Request) -> web.Response:
        raise web.HTTPFound("/static/index.html")

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "pid": os.getpid(),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "repo": str(self._workspace.root),
            "backend": self._backend.name,
            "runs": len(self._store),
        })

    async def _handle_send(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        text = body.get("text") if isinstance(body, dict) else None
        prompt = "" if text is None else str(text)
        run_id = self._store.create(prompt)
        log_run(run_id, "Created run", {"promptPreview": preview(prompt)})
        return web.json_response({"runId": run_id})

    async def _handle_stream(self, request: web.Request) -> web.StreamResponse:
        run_id = request.match_info["id"]
        run = self._store.get(run_id)
        if run is None:
            return web.json_response({"error": "no such run"}, status=404)

        transport = await AiohttpSseTransport.open(request)
        session = StreamSession(run_id, run.prompt, self._backend, self._store, transport)
        await session.run()
        return transport.response

    async def _handle_cmd_log(self, request: web.Request) -> web.Response:
        return web.json_response({"commands": self._store.get_commands(request.match_info["id"])})

    async def _handle_last_diff(self, request: web.Request) -> web.Response:
        return web.json_response({"diff": self._store.get_last_diff(request.match_info["id"])})

    async def _handle_get_model(self, request: web.Request) -> web.Response:
        settings = await self._backend.get_model_settings()
        return web.json_response(settings.to_dict())

    async def _handle_set_model(self, request: web.Request) -> web.Response:
        self._backend.update_model_selection(await _read_json(request))
        settings = await self._backend.get_model_settings()
        log_run("model", "Model selection updated", {
            "activeModel": settings.model or "(default)",
            "defaultModel": settings.default_model or "(none)",
            "activeEffort": settings.effort or "(default)",
            "defaultEffort": settings.default_effort or "(none)",
        })
        return web.json_response(settings.to_dict())

    async def _handle_list(self, request: web.Request) -> web.Response:
        requested = request.query.get("path", "")
        root = str(self._workspace.root)
        try:
            rel, entries = self._workspace.list_dir(requested)
        except (OSError, PathEscapeError) as exc:
            return web.json_response({"root": root, "path": requested, "entries": [], "error": str(exc)})
        return web.json_response({"root": root, "path": rel, "entries": entries})

    async def _handle_read(self, request: web.Request) -> web.Response:
        requested = request.query.get("path", "")
        if not requested:
            return web.json_response({"error": "path is required"}, status=400)
        try:
            rel, content = self._workspace.read_file(requested)
        except (OSError, UnicodeDecodeError, PathEscapeError) as exc:
            return web.json_response({"error": str(exc)}, status=400)
        return web.json_response({"path": rel, "content": content})

    async def _handle_save(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        if not isinstance(body, dict):
            body = {}
        rel_path = body.get("path")
        if not isinstance(rel_path, str) or not rel_path:
            return web.json_response({"ok": False, "error": "path is required"}, status=400)
        content = body.get("content")
        try:
            rel = self._workspace.save_file(rel_path, content if isinstance(content, str) else "")
        except (OSError, PathEscapeError) as exc:
            return web.json_response({"ok": False, "error": str(exc)}, status=400)
        return web.json_response({"ok": True, "path": rel})

    async def _handle_apply(self, request: web.Request) -> web.Response:
        run_id = request.match_info["id"]
        patch = self._store.get_last_diff(run_id)
        if not patch:
            return web.json_response({"ok": False, "output": "No diff available"})
        result = await self._workspace.apply_patch(patch)
        log_run(run_id, "Applied diff" if result.ok else "Diff apply failed", preview(result.output))
        return web.json_response({"ok": result.ok, "output": result.output})

    # ── Lifecycle ──

    async def start(self) -> None:
        """Start listening and serve until cancelled."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._settings.host, self._settings.port)
        await site.start()
        logger.info(
            "LuskUI listening on http://%s:%d (backend=%s, repo=%s)",
            self._settings.host, self._settings.port,
            self._backend.name, self._workspace.root,
        )
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()
