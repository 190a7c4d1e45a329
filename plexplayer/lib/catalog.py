# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Catalog client — playlists and playlist contents from the Plex proxy.

    GET {api_base}/playlists         → playlist menu
    GET {api_base}/playlist/{id}     → one playlist with its tracks

The proxy passes Plex JSON through more or less untouched, so the shape
varies (``{"items": [...]}``, ``{"playlist": {"tracks": [...]}}``, a bare
array, ...).  Rather than hard-coding one shape we collect every array in
the document and keep the one whose first entries look most like
playlists or tracks.
"""

import asyncio
import json
import logging
import re
from urllib.parse import parse_qsl, quote, urlencode, urlsplit

import aiohttp

from plexplayer.playback.errors import CatalogError
from plexplayer.playback.models import Playlist, PlaylistSummary, Track

log = logging.getLogger(__name__)

API_BASE = "/plexproxy/api"
PROXY_PREFIX = "/plexproxy"
SAMPLE_SIZE = 10
BODY_EXCERPT = 300

_LEGACY_STREAM = re.compile(r"/api/stream/([^?&#]+)", re.IGNORECASE)
_BARE_TICKET = re.compile(r"[A-Za-z0-9._-]{8,}")
_ABSOLUTE = re.compile(r"^https?://[^/]+(/.*)$", re.IGNORECASE)


def _first(item, *keys):
    """First value under *keys* that is not None (``a ?? b ?? c``)."""
    if not isinstance(item, dict):
        return None
    for key in keys:
        value = item.get(key)
        if value is not None:
            return value
    return None


def _has_any(item, *keys) -> bool:
    return isinstance(item, dict) and any(item.get(k) for k in keys)


def _collect_arrays(root, shallow_keys=(), nested: str | None = None) -> list:
    """Well-known arrays first (also under root[*nested*]), then every
    non-empty array found by a deep scan."""
    arrays = []
    if isinstance(root, list):
        arrays.append(root)
    if isinstance(root, dict):
        scopes = [root]
        if nested and isinstance(root.get(nested), dict):
            scopes.append(root[nested])
        for scope in scopes:
            for key in shallow_keys:
                if isinstance(scope.get(key), list):
                    arrays.append(scope[key])

    def deep(node):
        values = node.values() if isinstance(node, dict) else node
        for value in values:
            if isinstance(value, list) and value:
                arrays.append(value)
            elif isinstance(value, (dict, list)):
                deep(value)

    if isinstance(root, (dict, list)):
        deep(root)
    return arrays


def _best_array(arrays, score) -> list:
    best, best_score = None, float("-inf")
    for arr in arrays:
        if not arr:
            continue
        s = score(arr[:SAMPLE_SIZE])
        if s > best_score:
            best, best_score = arr, s
    return best or []


# ── URL helpers ──

def proxied_plex_url(value, prefix: str = PROXY_PREFIX):
    """Make a Plex URL same-origin; query strings are left alone."""
    if not value:
        return None
    s = str(value)
    if s.startswith(prefix + "/"):
        return s
    m = _ABSOLUTE.match(s)
    if m:
        return f"{prefix}{m.group(1)}"
    if s.startswith("/"):
        return f"{prefix}{s}"
    return s  # data:, blob:, ...


def proxied_stream_url(original, rating_key=None, api_base: str = API_BASE):
    """Route a stream hint through the proxy, adding ``rk=`` when the key is known."""
    if not original or not isinstance(original, str):
        return original
    rk = f"?rk={quote(str(rating_key), safe='')}" if rating_key else ""

    if original.startswith(f"{api_base}/stream/"):
        if not rating_key:
            return original
        parts = urlsplit(original)
        query = parse_qsl(parts.query, keep_blank_values=True)
        if not any(k == "rk" for k, _ in query):
            query.append(("rk", str(rating_key)))
        out = parts.path + "?" + urlencode(query)
        return out + (f"#{parts.fragment}" if parts.fragment else "")

    m = _LEGACY_STREAM.search(original)
    if m:
        return f"{api_base}/stream/{m.group(1)}{rk}"
    if _BARE_TICKET.fullmatch(original):
        return f"{api_base}/stream/{original}{rk}"
    return original


# ── Playlists ──

def normalize_playlist_summary(item, i: int) -> PlaylistSummary | None:
    raw_id = _first(item, "id", "key", "ratingKey", "guid")
    if raw_id is None:
        raw_id = f"pl-{i}"
    raw_title = _first(item, "title", "name")
    if raw_title is None:
        raw_title = f"Playlist {i + 1}"
    pid, title = str(raw_id), str(raw_title)
    if not pid or not title:
        return None
    return PlaylistSummary(id=pid, title=title)


def _score_playlists(sample) -> float:
    return sum(_has_any(it, "title", "name") + _has_any(it, "id", "key", "ratingKey", "guid")
               for it in sample)


def extract_playlists(root) -> list[PlaylistSummary]:
    """Every {id, title} in the best-looking array, de-duplicated by id."""
    arrays = _collect_arrays(root, ("playlists", "items", "results"))
    best = _best_array(arrays, _score_playlists)
    out, seen = [], set()
    for i, item in enumerate(best):
        summary = normalize_playlist_summary(item, i)
        if summary and summary.id not in seen:
            seen.add(summary.id)
            out.append(summary)
    return out


# ── Tracks ──

def score_track_like(o) -> float:
    if not isinstance(o, dict):
        return -10
    s = 0.0
    if _has_any(o, "title", "name", "track"):
        s += 2
    if _has_any(o, "artist", "artistName", "album"):
        s += 1
    if _has_any(o, "streamUrl", "url", "mediaUrl", "href"):
        s += 3
    if _has_any(o, "id", "key", "ratingKey", "guid"):
        s += 1.5
    if isinstance(o.get("duration"), (int, float)) and not isinstance(o.get("duration"), bool):
        s += 0.5
    return s


def normalize_item(item, i: int, api_base: str = API_BASE) -> Track:
    if not isinstance(item, dict):
        item = {}
    title = _first(item, "title", "name", "track")
    title = str(title).strip() if title is not None else f"Track {i + 1}"
    track_id = _first(item, "id", "ratingKey", "key", "guid")
    src = _first(item, "streamUrl", "url", "mediaUrl", "href", "id", "key", "ratingKey", "guid")
    artist = _first(item, "artist", "artistName")
    album = item.get("album")
    return Track(
        id=str(track_id) if track_id is not None else None,
        title=title,
        artist=str(artist) if artist is not None else "",
        album=str(album) if album is not None else "",
        cover_url=proxied_plex_url(_first(item, "artUrl", "thumb", "image", "art")),
        src=proxied_stream_url(str(src) if src is not None else "", api_base=api_base) or None,
    )


def extract_playlist(root, api_base: str = API_BASE) -> Playlist:
    """Title plus normalised tracks from the best-scoring array in *root*."""
    arrays = _collect_arrays(root, ("items", "tracks", "entries", "results"), nested="playlist")

    best = _best_array(arrays, lambda sample: sum(map(score_track_like, sample)) / len(sample))
    title = _first(root, "title", "name")
    if title is None:
        title = _first(root.get("playlist") if isinstance(root, dict) else None, "title", "name")
    tracks = [normalize_item(it, i, api_base) for i, it in enumerate(best)]
    log.debug("extract_playlist: %d candidate arrays, %d tracks", len(arrays), len(tracks))
    return Playlist(title=str(title) if title is not None else "", tracks=tracks)


class CatalogClient:
    def __init__(self, session: aiohttp.ClientSession, base_url: str,
                 api_base: str = API_BASE, timeout: float = 15):
        self._session = session
        self.base_url = base_url.rstrip("/")
        self.api_base = "/" + api_base.strip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def fetch_json(self, path: str):
        url = f"{self.base_url}{self.api_base}{path}"
        try:
            async with self._session.get(
                url,
                headers={"Accept": "application/json", "Cache-Control": "no-store"},
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                if resp.status < 200 or resp.status >= 300:
                    raise CatalogError(
                        f"HTTP {resp.status} {resp.reason}. Body: {text[:BODY_EXCERPT]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CatalogError(f"{url}: {e or 'timeout'}") from e
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise CatalogError(f"JSON parse error: {e}") from e

    async def list_playlists(self) -> list[PlaylistSummary]:
        playlists = extract_playlists(await self.fetch_json("/playlists"))
        log.info("Catalog: %d playlists", len(playlists))
        return playlists

    async def get_playlist(self, playlist_id) -> Playlist:
        data = await self.fetch_json(f"/playlist/{quote(str(playlist_id), safe='')}")
        playlist = extract_playlist(data, self.api_base)
        streamable = [t for t in playlist.tracks if t.id]
        if len(streamable) != len(playlist.tracks):
            log.info("Playlist %s: dropped %d tracks without an id",
                     playlist_id, len(playlist.tracks) - len(streamable))
        return Playlist(title=playlist.title, tracks=streamable)
