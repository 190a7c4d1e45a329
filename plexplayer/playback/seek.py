# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
SeekController — scrub bar drag and keyboard seeking.

Dragging only moves the displayed position; the sink is seeked once, on
pointer-up, so a drag over a network stream does not re-buffer on every
intermediate frame.

    idle ──pointer_down──▶ dragging ──pointer_move──▶ dragging
      ▲                        │
      └──────pointer_up────────┘   (one seek, resume if it was playing)

Keyboard keys commit immediately.
"""

import logging
import math
from dataclasses import dataclass

from plexplayer.playback.errors import SeekFailure

log = logging.getLogger(__name__)

STEP_SECONDS = 5
PAGE_FRACTION = 0.10
END_MARGIN = 0.01


@dataclass
class ScrubGeometry:
    """Horizontal extent of the scrub track in client pixels."""
    left: float = 0.0
    width: float = 0.0


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class SeekController:
    def __init__(self, sink, *, report=None, on_display=None,
                 step: float = STEP_SECONDS, page_fraction: float = PAGE_FRACTION):
        self._sink = sink
        self._report = report            # report(message, level)
        self._on_display = on_display    # on_display(seconds)
        self.step = step
        self.page_fraction = page_fraction
        self.geometry = ScrubGeometry()
        self.dragging = False
        self.was_playing = False
        self.display_position: float | None = None

    # ── Mapping ──

    def _usable_duration(self) -> float | None:
        d = self._sink.duration
        if d is None or not math.isfinite(d) or d <= 0:
            return None
        return d

    def fraction_for_x(self, client_x: float) -> float:
        g = self.geometry
        if not g.width:
            return 0.0
        return clamp((client_x - g.left) / g.width, 0.0, 1.0)

    def position_for_x(self, client_x: float) -> float:
        return self.fraction_for_x(client_x) * (self._usable_duration() or 0.0)

    def x_for_position(self, seconds: float) -> float:
        d = self._usable_duration()
        g = self.geometry
        if not d:
            return g.left
        return g.left + clamp(seconds, 0.0, d) / d * g.width

    def _show(self, seconds: float) -> None:
        self.display_position = seconds
        if self._on_display:
            self._on_display(seconds)

    # ── Pointer ──

    async def pointer_down(self, client_x: float) -> bool:
        if self._usable_duration() is None:
            return False
        self.dragging = True
        self.was_playing = not self._sink.paused
        try:
            await self._sink.pause()
        except Exception as e:
            log.debug("pause before drag failed: %s", e)
        self._show(self.position_for_x(client_x))
        return True

    async def pointer_move(self, client_x: float) -> bool:
        if not self.dragging:
            return False
        self._show(self.position_for_x(client_x))
        return True

    async def pointer_up(self, client_x: float) -> bool:
        if not self.dragging:
            return False
        self.dragging = False
        target = self.position_for_x(client_x)
        self._show(target)
        try:
            await self._sink.seek(target)
        except Exception as e:
            self._fail(e)
            return False
        if self.was_playing:
            try:
                await self._sink.play()
            except Exception as e:
                self._fail(e, "Resume after seek failed")
                return False
        return True

    async def seek_by_pointer(self, client_x: float, phase: str) -> bool:
        """Dispatch a pointer *phase* ("down" | "move" | "up")."""
        handler = {
            "down": self.pointer_down,
            "move": self.pointer_move,
            "up": self.pointer_up,
        }.get(phase)
        if handler is None:
            return False
        return await handler(client_x)

    # ── Keyboard / direct ──

    def target_for_key(self, key: str) -> float | None:
        d = self._usable_duration()
        if d is None:
            return None
        now = self._sink.position or 0.0
        page = max(1.0, d * self.page_fraction)
        target = {
            "ArrowRight": now + self.step,
            "ArrowLeft": now - self.step,
            "PageUp": now + page,
            "PageDown": now - page,
            "Home": 0.0,
            "End": d - END_MARGIN,
        }.get(key)
        if target is None:
            return None
        return clamp(target, 0.0, d)

    async def key(self, key: str) -> bool:
        """Handle a scrub-control key. Returns False for keys it does not own."""
        target = self.target_for_key(key)
        if target is None:
            return False
        await self._commit(target)
        return True

    async def seek_to(self, seconds: float) -> bool:
        d = self._usable_duration()
        if d is None:
            return False
        return await self._commit(clamp(seconds, 0.0, d))

    async def _commit(self, target: float) -> bool:
        try:
            await self._sink.seek(target)
        except Exception as e:
            self._fail(e)
            return False
        self._show(target)
        return True

    def _fail(self, error: Exception, what: str = "Seek failed") -> None:
        failure = SeekFailure(f"{what}: {error}")
        log.warning("%s", failure)
        if self._report:
            self._report(str(failure), "error")

    def reset(self) -> None:
        """Forget drag state (track switch)."""
        self.dragging = False
        self.was_playing = False
        self.display_position = None
