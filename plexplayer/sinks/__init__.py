"""
Sinks — the single media output the orchestrator plays into.

Each sink turns attach/detach/play/pause/seek into engine commands and
reports lifecycle events through ``sink.events``.

Current sinks:
  mpv.py   — one idle mpv process driven over JSON IPC
"""

from .base import PlaybackSink, SinkEvent, SinkEventKind
from .mpv import MpvSink

__all__ = [
    "PlaybackSink",
    "SinkEvent",
    "SinkEventKind",
    "MpvSink",
]
