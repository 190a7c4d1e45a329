# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
StreamResolver — track id → playable StreamReference, with retry.

Every attempt mints a new ticket.  A caller that has to do more work with
the reference before it counts as a success (detach, attach, start) passes
it as ``use``; a failure there is retried together with the mint.

Backoff between attempts is linear and capped:
    wait = min(backoff_step * attempt, backoff_cap)
"""

import asyncio
import logging

from plexplayer.playback.errors import StreamUnavailable, Superseded
from plexplayer.playback.models import StreamReference

log = logging.getLogger(__name__)

BACKOFF_STEP = 1.5
BACKOFF_CAP = 3.0


class StreamResolver:
    def __init__(self, tickets, *, backoff_step: float = BACKOFF_STEP,
                 backoff_cap: float = BACKOFF_CAP, sleep=asyncio.sleep):
        self._tickets = tickets
        self.backoff_step = backoff_step
        self.backoff_cap = backoff_cap
        self._sleep = sleep

    def backoff_for(self, attempt: int) -> float:
        return min(self.backoff_step * attempt, self.backoff_cap)

    async def mint(self, track_id: str) -> StreamReference:
        """One fresh reference, no retry."""
        ticket = await self._tickets.mint_ticket(track_id)
        return StreamReference(
            url=self._tickets.stream_url(ticket, track_id),
            ticket=ticket,
            track_id=track_id,
        )

    async def resolve(self, track_id: str, max_attempts: int = 2, *,
                      use=None, on_retry=None) -> StreamReference:
        """Mint (and optionally *use*) a reference, retrying up to *max_attempts*.

        ``on_retry(attempt, error, delay)`` is called before each backoff wait.
        Raises StreamUnavailable with the last cause once attempts run out;
        Superseded from *use* is re-raised immediately.
        """
        last_error = None
        for attempt in range(1, max(1, max_attempts) + 1):
            try:
                ref = await self.mint(track_id)
                if use is not None:
                    await use(ref)
                return ref
            except (asyncio.CancelledError, Superseded):
                raise
            except Exception as e:
                last_error = e
                if attempt >= max_attempts:
                    break
                delay = self.backoff_for(attempt)
                log.warning("Resolve %s failed (attempt %d/%d, retry in %.1fs): %s",
                            track_id, attempt, max_attempts, delay, e)
                if on_retry is not None:
                    on_retry(attempt, e, delay)
                await self._sleep(delay)

        log.warning("Resolve %s failed after %d attempt(s): %s",
                    track_id, max_attempts, last_error)
        raise StreamUnavailable(track_id, max_attempts, last_error)

    async def prewarm(self, track) -> bool:
        """Mint a ticket for *track* once so the proxy has it warm.

        Returns False without doing anything when the track has no id or was
        already prewarmed.  Errors are logged, never raised.
        """
        if not track.id or track.prewarmed:
            return False
        track.prewarmed = True
        try:
            await self._tickets.mint_ticket(track.id)
            log.debug("Prewarmed %s", track.id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.debug("Prewarm %s failed: %s", track.id, e)
        return True
