# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""Track, playlist and stream-reference records."""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Track:
    """One playable playlist entry. Only ``prewarmed`` changes after construction."""
    id: Optional[str]
    title: str
    artist: str = ""
    album: str = ""
    cover_url: Optional[str] = None
    src: Optional[str] = None
    prewarmed: bool = field(default=False, compare=False)

    def label(self) -> str:
        """'Title — Artist' (artist part omitted when empty)."""
        return f"{self.title} — {self.artist}" if self.artist else self.title

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "cover_url": self.cover_url,
        }


@dataclass
class Playlist:
    """A loaded playlist: title plus streamable tracks in catalog order."""
    title: str
    tracks: List[Track]


@dataclass(frozen=True)
class PlaylistSummary:
    """Playlist menu entry."""
    id: str
    title: str


@dataclass(frozen=True)
class StreamReference:
    """Sink-attachable URL carrying both the ticket and the track id."""
    url: str
    ticket: str
    track_id: str
