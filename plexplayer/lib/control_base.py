# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
ControlBase — HTTP + WebSocket control surface for one Orchestrator.

The UI drives playback through small JSON POSTs and listens on /ws for
``player_update`` pushes carrying a full state snapshot.

Subclass contract:

    class MyService(ControlBase):
        port = 8780

        async def on_start(self):
            self.orchestrator = ...     # must be set before requests arrive

Routes:
    GET  /player/state                 snapshot
    POST /player/play      {position | track_index}
    POST /player/next | /player/prev | /player/toggle | /player/shuffle
    POST /player/seek      {seconds}
    POST /player/scrub     {client_x, phase, left?, width?}
    POST /player/key       {phase, code, key?, typing?, focus?}
    POST /player/playlist  {id, auto_start?}
    POST /player/online
    GET  /playlists
    GET  /ws

Optional overrides:
    on_start()       — called after the HTTP server is up
    on_stop()        — called during shutdown
    add_routes(app)  — add extra aiohttp routes
"""

import asyncio
import json
import logging
import signal

from aiohttp import web

from plexplayer.playback.errors import CatalogError
from plexplayer.playback.seek import ScrubGeometry

log = logging.getLogger(__name__)

TIMELINE_INTERVAL = 0.5  # s between timeline-only pushes


class ControlBase:
    port: int = 8780

    def __init__(self):
        self.orchestrator = None
        self.catalog = None
        self._ws_clients: set[web.WebSocketResponse] = set()
        self._runner: web.AppRunner | None = None
        self._push_tasks: set[asyncio.Task] = set()
        self._last_timeline_push = 0.0

    # ── App ──

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws", self._handle_ws)
        app.router.add_get("/player/state", self._handle_state)
        app.router.add_post("/player/play", self._handle_play)
        app.router.add_post("/player/next", self._handle_next)
        app.router.add_post("/player/prev", self._handle_prev)
        app.router.add_post("/player/toggle", self._handle_toggle)
        app.router.add_post("/player/shuffle", self._handle_shuffle)
        app.router.add_post("/player/seek", self._handle_seek)
        app.router.add_post("/player/scrub", self._handle_scrub)
        app.router.add_post("/player/key", self._handle_key)
        app.router.add_post("/player/playlist", self._handle_playlist)
        app.router.add_post("/player/online", self._handle_online)
        app.router.add_get("/playlists", self._handle_playlists)
        app.router.add_route("OPTIONS", "/{tail:.*}", self._handle_cors)

        # Let subclass add extra routes
        self.add_routes(app)
        return app

    def attach(self, orchestrator, catalog=None):
        """Bind the orchestrator whose state this surface exposes."""
        self.orchestrator = orchestrator
        self.catalog = catalog
        orchestrator.add_listener(self._on_change)

    async def start(self):
        """Create the aiohttp app, register routes, start listening."""
        await self.on_start()
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, "0.0.0.0", self.port)
        await site.start()
        log.info("Control: HTTP + WebSocket on port %d", self.port)
        await self.on_started()

    async def run(self):
        """Convenience entry-point: start + wait for signal + stop."""
        await self.start()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
        try:
            await stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Clean up resources."""
        await self.on_stop()
        for task in list(self._push_tasks):
            task.cancel()
        for ws in list(self._ws_clients):
            await ws.close()
        self._ws_clients.clear()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    # ── WebSocket broadcasting ──

    def _on_change(self, orchestrator, reason: str):
        if not self._ws_clients:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if reason == "timeline":
            now = loop.time()
            if now - self._last_timeline_push < TIMELINE_INTERVAL:
                return
            self._last_timeline_push = now
        task = loop.create_task(self.broadcast_update(reason))
        self._push_tasks.add(task)
        task.add_done_callback(self._push_tasks.discard)

    async def broadcast_update(self, reason: str = "update"):
        """Push a player_update to all connected WebSocket clients."""
        if not self._ws_clients or self.orchestrator is None:
            return

        message = json.dumps({
            "type": "player_update",
            "reason": reason,
            "data": self.orchestrator.snapshot(),
        })

        disconnected = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send_str(message)
            except Exception:
                disconnected.add(ws)

        self._ws_clients -= disconnected
        if reason != "timeline":
            log.debug("Broadcast player update to %d clients: %s",
                      len(self._ws_clients), reason)

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        self._ws_clients.add(ws)
        log.info("WebSocket client connected (%d total)", len(self._ws_clients))

        try:
            if self.orchestrator is not None:
                await ws.send_json({
                    "type": "player_update",
                    "reason": "client_connect",
                    "data": self.orchestrator.snapshot(),
                })
            # Push-only; client messages are ignored
            async for msg in ws:
                pass
        finally:
            self._ws_clients.discard(ws)
            log.info("WebSocket client disconnected (%d remaining)",
                     len(self._ws_clients))

        return ws

    # ── CORS / helpers ──

    def _cors_headers(self):
        return {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        }

    async def _handle_cors(self, request):
        return web.Response(headers=self._cors_headers())

    async def _body(self, request: web.Request) -> dict:
        try:
            data = await request.json()
        except Exception:
            data = {}
        return data if isinstance(data, dict) else {}

    def _ok(self, ok: bool = True, **extra) -> web.Response:
        body = {"status": "ok" if ok else "error"}
        body.update(extra)
        return web.json_response(body, headers=self._cors_headers())

    def _error(self, message: str, status: int = 400) -> web.Response:
        return web.json_response({"status": "error", "message": message},
                                 status=status, headers=self._cors_headers())

    async def _command(self, name: str, coro) -> web.Response:
        try:
            ok = await coro
        except Exception as e:
            log.exception("Command %s failed", name)
            return self._error(str(e), status=500)
        return self._ok(bool(ok))

    # ── Route handlers ──

    async def _handle_state(self, request: web.Request) -> web.Response:
        return web.json_response(self.orchestrator.snapshot(), headers=self._cors_headers())

    async def _handle_play(self, request: web.Request) -> web.Response:
        data = await self._body(request)
        try:
            if data.get("track_index") is not None:
                coro = self.orchestrator.play_track_index(int(data["track_index"]))
            else:
                coro = self.orchestrator.play_at_position(int(data.get("position", 0)))
        except (TypeError, ValueError):
            return self._error("position must be an integer")
        return await self._command("play", coro)

    async def _handle_next(self, request: web.Request) -> web.Response:
        return await self._command("next", self.orchestrator.next())

    async def _handle_prev(self, request: web.Request) -> web.Response:
        return await self._command("prev", self.orchestrator.previous())

    async def _handle_toggle(self, request: web.Request) -> web.Response:
        return await self._command("toggle", self.orchestrator.toggle_play_pause())

    async def _handle_shuffle(self, request: web.Request) -> web.Response:
        return await self._command("shuffle", self.orchestrator.toggle_shuffle())

    async def _handle_seek(self, request: web.Request) -> web.Response:
        data = await self._body(request)
        try:
            seconds = float(data["seconds"])
        except (KeyError, TypeError, ValueError):
            return self._error("seconds is required")
        return await self._command("seek", self.orchestrator.seek.seek_to(seconds))

    async def _handle_scrub(self, request: web.Request) -> web.Response:
        data = await self._body(request)
        seek = self.orchestrator.seek
        try:
            client_x = float(data["client_x"])
            if "width" in data:
                seek.geometry = ScrubGeometry(float(data.get("left", 0)), float(data["width"]))
        except (KeyError, TypeError, ValueError):
            return self._error("client_x is required")
        return await self._command(
            "scrub", seek.seek_by_pointer(client_x, str(data.get("phase", ""))))

    async def _handle_key(self, request: web.Request) -> web.Response:
        data = await self._body(request)
        code = str(data.get("code") or "")
        if not code:
            return self._error("code is required")
        keys = self.orchestrator.keys
        if data.get("phase") == "up":
            keys.key_up(code)
            return self._ok(handled=False)
        try:
            handled = await keys.key_down(
                code, str(data.get("key") or ""),
                typing=bool(data.get("typing")), focus=data.get("focus"))
        except Exception as e:
            log.exception("Key %s failed", code)
            return self._error(str(e), status=500)
        return self._ok(handled=handled)

    async def _handle_playlist(self, request: web.Request) -> web.Response:
        data = await self._body(request)
        playlist_id = data.get("id")
        if playlist_id in (None, ""):
            return self._error("id is required")
        return await self._command(
            "playlist",
            self.orchestrator.load_playlist(playlist_id, auto_start=data.get("auto_start", True)))

    async def _handle_online(self, request: web.Request) -> web.Response:
        return await self._command("online", self.orchestrator.network_restored())

    async def _handle_playlists(self, request: web.Request) -> web.Response:
        if self.catalog is None:
            return self._error("no catalog configured", status=503)
        try:
            playlists = await self.catalog.list_playlists()
        except CatalogError as e:
            log.warning("Playlist listing failed: %s", e)
            return self._error(f"Error loading playlists: {e}", status=502)
        return self._ok(
            playlists=[{"id": p.id, "title": p.title} for p in playlists],
            selected=self.orchestrator.playlist_id if self.orchestrator else None)

    # ── Subclass hooks ──

    async def on_start(self):
        """Called before the HTTP server starts listening."""

    async def on_started(self):
        """Called after the HTTP server is up."""

    async def on_stop(self):
        """Called during shutdown."""

    def add_routes(self, app: web.Application):
        """Add extra aiohttp routes to the app."""
