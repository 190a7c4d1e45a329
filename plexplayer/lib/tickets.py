# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Stream-ticket client for the Plex proxy.

    GET {api_base}/stream/for/{track_id}   →   {"ticket": "..."}

Tickets are single-use and time-boxed; nothing here caches them.  The
playable URL is ``{base_url}{api_base}/stream/{ticket}?rk={track_id}`` — the
``rk`` parameter lets the proxy re-mint on its side and lets us re-mint for
self-heal without re-deriving the track identity.
"""

import logging
from urllib.parse import quote

import aiohttp

from plexplayer.playback.errors import TicketError

log = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Accept": "application/json"}


class TicketClient:
    def __init__(self, session: aiohttp.ClientSession, base_url: str,
                 api_base: str = "/plexproxy/api", timeout: float = 10):
        self._session = session
        self.base_url = base_url.rstrip("/")
        self.api_base = "/" + api_base.strip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def mint_url(self, track_id: str) -> str:
        return f"{self.base_url}{self.api_base}/stream/for/{quote(str(track_id), safe='')}"

    def stream_url(self, ticket: str, track_id: str) -> str:
        return (f"{self.base_url}{self.api_base}/stream/{ticket}"
                f"?rk={quote(str(track_id), safe='')}")

    async def mint_ticket(self, track_id: str) -> str:
        """Request a fresh ticket. Raises TicketError on non-2xx."""
        log.debug("ticket: fetch %s", track_id)
        async with self._session.get(
            self.mint_url(track_id),
            headers=NO_STORE_HEADERS,
            timeout=self._timeout,
        ) as resp:
            log.debug("ticket: response %s (HTTP %d)", track_id, resp.status)
            if resp.status < 200 or resp.status >= 300:
                raise TicketError(resp.status, track_id)
            data = await resp.json(content_type=None)

        ticket = (data or {}).get("ticket") if isinstance(data, dict) else None
        if not ticket:
            raise TicketError(resp.status, track_id)
        log.debug("ticket: ok %s (len %d)", track_id, len(ticket))
        return ticket
