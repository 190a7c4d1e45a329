# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Shared configuration loader for the PlexPlayer service.

Loads a single JSON config file per install.  Search order:
  1. /etc/plexplayer/config.json   (deployed install)
  2. config.json                   (CWD, for local dev)
  3. ../../config/default.json     (repo fallback)

Usage:
    from plexplayer.lib.config import cfg

    base_url     = cfg("proxy", "base_url", default="http://localhost:8080")
    max_failures = cfg("playback", "max_consecutive_failures", default=4)
    playback     = cfg("playback")  # returns the whole dict
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None

_SEARCH_PATHS = [
    "/etc/plexplayer/config.json",
    "config.json",
    os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"),
]


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    proxy = config.get("proxy") or {}
    if not proxy.get("base_url"):
        logger.warning("Config %s: missing proxy.base_url, using http://localhost:8080", path)
    api_base = proxy.get("api_base", "")
    if api_base and not api_base.startswith("/"):
        logger.warning("Config %s: proxy.api_base '%s' should start with '/'", path, api_base)
    playback = config.get("playback") or {}
    max_fails = playback.get("max_consecutive_failures", 4)
    if not isinstance(max_fails, int) or max_fails < 1:
        logger.warning("Config %s: playback.max_consecutive_failures must be a positive int", path)
    attempts = playback.get("resolve_attempts", 2)
    if not isinstance(attempts, int) or attempts < 1:
        logger.warning("Config %s: playback.resolve_attempts must be a positive int", path)
    if not (config.get("playlist") or {}).get("id"):
        logger.info("Config %s: no playlist.id, the first playlist from the server is used", path)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _SEARCH_PATHS:
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.warning("No config.json found — using empty config")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("proxy")                               → config["proxy"]
    cfg("proxy", "api_base")                   → config["proxy"]["api_base"]
    cfg("seek", "step", default=5)             → config["seek"]["step"] or 5
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()
