# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Single-flight guard for the asyncio event loop.

At most one holder at a time; a second caller is refused, not queued.
Claiming is synchronous, so checking and taking the token cannot be
interleaved with another task.

Usage:
    flight = guard.try_claim("user-next")
    if flight is None:
        return False          # someone else is switching
    with flight:
        await do_the_switch()
"""

import asyncio
import logging

log = logging.getLogger(__name__)


class Flight:
    """A claimed token. Released when the ``with`` block exits."""

    def __init__(self, guard: "SingleFlight", reason: str):
        self._guard = guard
        self.reason = reason

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self._guard._release(self)
        return False


class SingleFlight:
    def __init__(self, name: str):
        self.name = name
        self._holder: Flight | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def busy(self) -> bool:
        return self._holder is not None

    @property
    def reason(self) -> str | None:
        """Reason given by the current holder, if any."""
        return self._holder.reason if self._holder else None

    def try_claim(self, reason: str = "") -> Flight | None:
        if self._holder is not None:
            log.debug("%s: drop %r (held by %r)", self.name, reason, self._holder.reason)
            return None
        self._holder = Flight(self, reason)
        self._idle.clear()
        log.debug("%s: claimed by %r", self.name, reason)
        return self._holder

    def _release(self, flight: Flight) -> None:
        if self._holder is flight:
            self._holder = None
            self._idle.set()
            log.debug("%s: released by %r", self.name, flight.reason)

    async def wait_released(self, timeout: float | None = None) -> bool:
        """Wait until nobody holds the guard. Does not claim it."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True
