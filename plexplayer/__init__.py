"""
PlexPlayer — resilient playback of a remote Plex playlist.

  playback/  — order model, orchestrator, resolver, self-heal, seek, keys
  sinks/     — the media output (mpv)
  lib/       — config, proxy HTTP clients, HTTP/WebSocket control surface
  player.py  — the runnable service
"""

__version__ = "1.0.0"
