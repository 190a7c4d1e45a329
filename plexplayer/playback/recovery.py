# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
SelfHeal — in-place recovery of a stream that failed mid-track.

The proxy's tickets expire and long streams over a flaky network drop.
Instead of skipping, we mint one fresh ticket for the *same* track,
reattach, seek back to where the listener was and resume.

    sink error ─▶ guards clear? ─▶ capture position ─▶ mint ─▶ attach
                                                              │
                               resume ◀── seek(position) ◀────┘

Refuses to start while a track switch is running or another recovery is in
flight.  A switch that starts during recovery bumps the session generation;
recovery notices and leaves the sink alone.  Failure pauses the sink and
shows a status; it never advances to the next track.
"""

import logging

from plexplayer.playback.errors import (
    MidStreamFault,
    PlayerError,
    SinkError,
    StreamUnavailable,
    Superseded,
)

log = logging.getLogger(__name__)

RECOVERING_LABEL = "Recovering stream…"


class SelfHeal:
    def __init__(self, owner):
        self._owner = owner   # the Orchestrator

    def should_recover(self) -> bool:
        owner = self._owner
        s = owner.session
        if s.halted or s.switching_track or s.advancing or s.error_recovering:
            return False
        return owner.current_track is not None

    async def recover(self, message: str | None = None) -> bool:
        """Heal the current stream. Returns True when playback resumed."""
        owner = self._owner
        session = owner.session
        sink = owner.sink

        if not self.should_recover():
            log.debug("recovery: skipped (halted=%s switching=%s advancing=%s recovering=%s)",
                      session.halted, session.switching_track, session.advancing, session.error_recovering)
            return False

        flight = session.recovering.try_claim("sink-error")
        if flight is None:
            return False

        with flight:
            track = owner.current_track
            resume_at = sink.position or 0.0
            generation = session.generation
            fault = MidStreamFault(message or "playback error")
            log.warning("Stream fault on %s at %.1fs (%s), recovering",
                        track.id, resume_at, fault)
            owner.show_overlay(RECOVERING_LABEL)
            try:
                ref = await owner.resolver.resolve(track.id, max_attempts=1)
                self._check(generation)
                await sink.attach(ref)
                self._check(generation)
                if resume_at > 0:
                    try:
                        await sink.seek(resume_at)
                    except SinkError as e:
                        log.warning("Recovery seek to %.1fs failed: %s", resume_at, e)
                await sink.play()
                self._check(generation)
            except Superseded:
                log.info("Recovery of %s superseded by a newer selection", track.id)
                return False
            except PlayerError as e:
                if generation != session.generation:
                    log.info("Recovery of %s failed after a newer selection: %s", track.id, e)
                    return False
                cause = e.cause if isinstance(e, StreamUnavailable) and e.cause else e
                log.warning("Recovery of %s failed: %s", track.id, cause)
                owner.show_status(f"Stream error: {cause}", "error")
                try:
                    await sink.pause()
                except SinkError as pause_error:
                    log.debug("pause after failed recovery: %s", pause_error)
                return False
            finally:
                owner.hide_overlay(RECOVERING_LABEL)

        log.info("Recovered %s at %.1fs", track.id, resume_at)
        owner.notify()
        return True

    def _check(self, generation: int) -> None:
        if generation != self._owner.session.generation:
            raise Superseded()
