# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""Key events from the UI → play/pause toggle or scrub-control seeks."""
import logging

log = logging.getLogger(__name__)

TOGGLE_CODES = {"Space"}
TOGGLE_KEYS = {"k"}
SCRUB_FOCUS = "scrub"


class KeyboardRouter:
    def __init__(self, toggle, seek_controller):
        self._toggle = toggle        # async () -> None
        self._seek = seek_controller
        self._held: set[str] = set()

    async def key_down(self, code: str, key: str = "", *,
                       typing: bool = False, focus: str | None = None) -> bool:
        """Returns True when the key was consumed."""
        # Scrub keys repeat while held; the toggle does not
        if focus == SCRUB_FOCUS and not typing and await self._seek.key(key or code):
            return True
        if code in self._held:
            return False
        self._held.add(code)
        if typing:
            return False
        if code in TOGGLE_CODES or (key or "").lower() in TOGGLE_KEYS:
            log.debug("key %s → toggle play/pause", code)
            await self._toggle()
            return True
        return False

    def key_up(self, code: str) -> None:
        self._held.discard(code)
