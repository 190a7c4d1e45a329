#!/usr/bin/env python3
# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
PlexPlayer service (plex-player)

Plays a Plex playlist through the same-origin Plex proxy into a local mpv,
minting a fresh stream ticket for every start and healing streams that
drop mid-track.  The UI talks to it over HTTP + WebSocket (see
lib/control_base.py).
"""

import asyncio
import logging
import os

import aiohttp

from plexplayer.lib.catalog import CatalogClient
from plexplayer.lib.config import cfg
from plexplayer.lib.control_base import ControlBase
from plexplayer.lib.tickets import TicketClient
from plexplayer.playback.errors import CatalogError
from plexplayer.playback.orchestrator import Orchestrator
from plexplayer.playback.resolver import StreamResolver
from plexplayer.sinks.mpv import MpvSink

logging.basicConfig(level=logging.INFO, format='[%(asctime)s] %(levelname)s %(message)s')
log = logging.getLogger('plex-player')

# Configuration
BASE_URL = cfg("proxy", "base_url", default="http://localhost:8080")
API_BASE = cfg("proxy", "api_base", default="/plexproxy/api")
PLAYLIST_ID = os.getenv('PLEXPLAYER_PLAYLIST') or cfg("playlist", "id")


class PlexPlayerService(ControlBase):
    port = cfg("server", "port", default=8780)

    def __init__(self):
        super().__init__()
        self._http_session: aiohttp.ClientSession | None = None
        self.sink: MpvSink | None = None

    async def on_start(self):
        self._http_session = aiohttp.ClientSession()
        tickets = TicketClient(self._http_session, BASE_URL, API_BASE)
        catalog = CatalogClient(self._http_session, BASE_URL, API_BASE)
        resolver = StreamResolver(
            tickets,
            backoff_step=cfg("playback", "backoff_step", default=1.5),
            backoff_cap=cfg("playback", "backoff_cap", default=3.0),
        )
        self.sink = MpvSink(
            binary=cfg("mpv", "binary", default="mpv"),
            ao=cfg("mpv", "ao", default="pulse"),
            ipc_socket=cfg("mpv", "ipc_socket", default="/tmp/plexplayer-mpv.sock"),
            load_timeout=cfg("playback", "load_timeout", default=15),
        )
        await self.sink.start()

        orchestrator = Orchestrator(
            self.sink, resolver, catalog=catalog,
            max_consecutive_failures=cfg("playback", "max_consecutive_failures", default=4),
            resolve_attempts=cfg("playback", "resolve_attempts", default=2),
            prewarm_threshold=cfg("playback", "prewarm_threshold", default=7.0),
            seek_step=cfg("seek", "step", default=5),
            page_fraction=cfg("seek", "page_fraction", default=0.1),
        )
        self.attach(orchestrator, catalog)
        await orchestrator.start()

    async def on_started(self):
        playlist_id = PLAYLIST_ID
        if not playlist_id:
            try:
                playlists = await self.catalog.list_playlists()
            except CatalogError as e:
                log.error("Error loading playlists: %s", e)
                self.orchestrator.show_status(f"Error loading playlists: {e}", "error")
                return
            if not playlists:
                self.orchestrator.show_status("No playlists available from server.", "error")
                return
            playlist_id = playlists[0].id
        log.info("Initial playlist %s", playlist_id)
        await self.orchestrator.load_playlist(playlist_id)

    async def on_stop(self):
        if self.orchestrator:
            await self.orchestrator.shutdown()
        if self.sink:
            await self.sink.shutdown()
            self.sink = None
        if self._http_session:
            await self._http_session.close()
            self._http_session = None


async def main():
    service = PlexPlayerService()
    await service.run()


if __name__ == "__main__":
    asyncio.run(main())
