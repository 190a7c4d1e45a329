# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Orchestrator — the playback state machine.

Owns the track list, the PlayOrder, the PlaybackSession and the sink.
Everything that changes what is playing goes through one path, _switch(),
guarded by the session's single-flight token:

    idle ─▶ resolving ─┬─▶ playing ⇄ paused
               ▲       │
               │    retrying (resolver backoff)
               │       │
               └─skip──┤  failure < max: next order position, same flight
                       │
                       └─▶ stopped   failure ≥ max: pause, blocking status

``stopped`` lasts until a user action (play, next/prev, toggle, shuffle,
playlist load).  Automatic reasons (ended, retry-skip, online) never run
while stopped.

Sink events arrive on ``sink.events``; dispatch() handles them
synchronously and spawns tasks for anything that awaits.
"""

import asyncio
import logging
import math

from plexplayer.playback.errors import (
    CatalogError,
    InvalidSelection,
    ResolutionFailure,
    SessionHalted,
    StreamUnavailable,
    Superseded,
)
from plexplayer.playback.keys import KeyboardRouter
from plexplayer.playback.order import PlayOrder
from plexplayer.playback.recovery import SelfHeal
from plexplayer.playback.seek import SeekController
from plexplayer.playback.session import PlaybackSession, PlayerState, Status
from plexplayer.sinks.base import SinkEventKind

log = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILURES = 4
RESOLVE_ATTEMPTS = 2
PREWARM_THRESHOLD = 7.0
SWITCH_WAIT = 20

LOADING_TRACK = "Loading track…"
LOADING_PLAYLIST = "Loading playlist…"
BUFFERING = "Buffering…"

AUTOMATIC_REASONS = {"ended", "retry-skip", "online"}


def fmt_time(seconds) -> str:
    """m:ss, with 0:00 for unknown or negative values."""
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "0:00"
    total = int(seconds)
    return f"{total // 60}:{total % 60:02d}"


class Orchestrator:
    def __init__(self, sink, resolver, *, catalog=None,
                 max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES,
                 resolve_attempts: int = RESOLVE_ATTEMPTS,
                 prewarm_threshold: float = PREWARM_THRESHOLD,
                 seek_step: float = 5, page_fraction: float = 0.10,
                 rng=None):
        self.sink = sink
        self.resolver = resolver
        self.catalog = catalog
        self.max_failures = max_consecutive_failures
        self.resolve_attempts = resolve_attempts
        self.prewarm_threshold = prewarm_threshold
        self._rng = rng

        self.session = PlaybackSession()
        self.tracks: list = []
        self.order = PlayOrder()
        self.playlist_id: str | None = None
        self.playlist_title = ""
        self.status = Status()
        self.overlay: str | None = None

        self.seek = SeekController(
            sink, report=self.show_status,
            on_display=lambda _s: self.notify("timeline"),
            step=seek_step, page_fraction=page_fraction)
        self.recovery = SelfHeal(self)
        self.keys = KeyboardRouter(self.toggle_play_pause, self.seek)

        self._listeners: list = []
        self._tasks: set[asyncio.Task] = set()
        self._event_task: asyncio.Task | None = None

    # ── Lifecycle ──

    async def start(self):
        """Start consuming sink events."""
        if self._event_task is None:
            self._event_task = asyncio.create_task(self._consume_events())

    async def shutdown(self):
        if self._event_task:
            self._event_task.cancel()
            try:
                await self._event_task
            except asyncio.CancelledError:
                pass
            self._event_task = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _consume_events(self):
        while True:
            event = await self.sink.events.get()
            try:
                self.dispatch(event)
            except Exception:
                log.exception("Sink event %s failed", event.kind)

    def spawn(self, coro, name: str = "") -> asyncio.Task:
        task = asyncio.create_task(coro, name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Task %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def settle(self):
        """Wait until every spawned task (including ones they spawn) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Listeners / status ──

    def add_listener(self, fn):
        """fn(orchestrator, reason) after every change; reason is "state" or "timeline"."""
        self._listeners.append(fn)

    def notify(self, reason: str = "state"):
        for fn in list(self._listeners):
            try:
                fn(self, reason)
            except Exception:
                log.exception("Listener failed")

    def show_status(self, message: str, level: str = "info", blocking: bool = False):
        self.status = Status(message, level, blocking)
        if message:
            log.info("Status [%s]: %s", level, message)
        self.notify()

    def clear_status(self):
        self.status = Status()
        self.notify()

    def show_overlay(self, label: str):
        self.overlay = label
        self.notify()

    def hide_overlay(self, label: str | None = None):
        """Hide the overlay; with *label*, only if that label is showing."""
        if label is not None and self.overlay != label:
            return
        self.overlay = None
        self.notify()

    # ── Queries ──

    @property
    def state(self) -> PlayerState:
        return self.session.state

    @property
    def current_track(self):
        i = self.order.current_track_index
        if i is None or i >= len(self.tracks):
            return None
        return self.tracks[i]

    def snapshot(self) -> dict:
        sink = self.sink
        duration = sink.duration if sink.duration_known else 0.0
        if self.seek.dragging and self.seek.display_position is not None:
            elapsed = self.seek.display_position
        else:
            elapsed = sink.position or 0.0
        remaining = max(0.0, duration - elapsed) if duration else 0.0
        track = self.current_track
        return {
            "state": self.session.state.value,
            "playlist_id": self.playlist_id,
            "playlist_title": self.playlist_title,
            "cursor": self.order.cursor,
            "track_index": self.order.current_track_index,
            "track": track.to_dict() if track else None,
            "order": list(self.order),
            "track_count": len(self.tracks),
            "shuffle": self.session.shuffle_on,
            "playing": sink.has_source and not sink.paused,
            "paused": sink.paused,
            "elapsed": elapsed,
            "duration": duration,
            "remaining": remaining,
            "played_fraction": min(1.0, elapsed / duration) if duration else 0.0,
            "buffered_fraction": min(1.0, sink.buffered_end / duration) if duration else 0.0,
            "elapsed_text": fmt_time(elapsed),
            "duration_text": fmt_time(duration),
            "remaining_text": f"-{fmt_time(remaining)}",
            "status": self.status.to_dict(),
            "overlay": self.overlay,
            "consecutive_failures": self.session.consecutive_failures,
            "halted": self.session.halted,
            "dragging": self.seek.dragging,
        }

    # ── Track set ──

    def set_tracks(self, tracks, title: str = "") -> bool:
        """Replace the track list. Tracks without an id are dropped."""
        self.tracks = [t for t in tracks if t.id]
        self.playlist_title = title
        self._rebuild_order(None)
        self.notify()
        return bool(self.tracks)

    def _rebuild_order(self, keep_index):
        n = len(self.tracks)
        if self.session.shuffle_on:
            self.order = PlayOrder.shuffled(n, keep_index, self._rng)
        else:
            self.order = PlayOrder.sequential(n, keep_index)

    async def load_playlist(self, playlist_id, auto_start: bool = False) -> bool:
        if self.catalog is None:
            self.show_status("Error loading playlist: no catalog configured", "error")
            return False

        generation = self.session.next_generation()
        self.session.reset_failures()
        try:
            await self.sink.pause()
            await self.sink.detach()
        except Exception as e:
            log.debug("detach before playlist load: %s", e)
        self.tracks = []
        self.order = PlayOrder()
        self.playlist_id = str(playlist_id)
        self.playlist_title = ""
        self.seek.reset()
        self.session.state = PlayerState.IDLE
        self.show_status(LOADING_PLAYLIST)
        self.show_overlay(LOADING_PLAYLIST)

        try:
            playlist = await self.catalog.get_playlist(playlist_id)
        except CatalogError as e:
            if generation != self.session.generation:
                log.info("Playlist %s failed after a newer selection: %s", playlist_id, e)
                return False
            log.error("Playlist %s failed to load: %s", playlist_id, e)
            self.show_status(f"Error loading playlist: {e}", "error")
            return False
        finally:
            if generation == self.session.generation:
                self.hide_overlay(LOADING_PLAYLIST)

        if generation != self.session.generation:
            log.info("Playlist %s superseded by a newer selection", playlist_id)
            return False

        if not self.set_tracks(playlist.tracks, playlist.title):
            self.show_status("No tracks found in this playlist.", "error")
            return False
        log.info("Loaded playlist %s (%s, %d tracks)",
                 playlist_id, playlist.title, len(self.tracks))
        self.clear_status()

        if auto_start:
            if not await self.session.switch.wait_released(SWITCH_WAIT):
                log.warning("Auto-start of playlist %s skipped: switch still busy", playlist_id)
                return True
            return await self._run_switch(0, "playlist", user=True)
        return True

    # ── Playback operations ──

    async def play_at_position(self, position: int, reason: str = "user") -> bool:
        return await self._run_switch(position, reason, user=True)

    async def play_track_index(self, track_index: int) -> bool:
        """Play the order position holding *track_index* (row click)."""
        position = self.order.position_of(track_index)
        if position is None:
            return False
        return await self._run_switch(position, "user-row", user=True)

    async def advance(self, delta: int, reason: str = "user") -> bool:
        user = reason not in AUTOMATIC_REASONS
        if self.session.halted and not user:
            log.debug("advance(%+d, %s) ignored: stopped", delta, reason)
            return False
        if self.session.advancing:
            log.debug("advance(%+d, %s) dropped: switch in flight (%s)",
                      delta, reason, self.session.switch.reason)
            return False
        target = self.order.advance(delta)
        if target is None:
            return False
        return await self._run_switch(target, reason, user=user)

    async def next(self) -> bool:
        return await self.advance(+1, "user-next")

    async def previous(self) -> bool:
        return await self.advance(-1, "user-prev")

    async def toggle_play_pause(self) -> bool:
        if self.overlay in (LOADING_TRACK, LOADING_PLAYLIST):
            log.debug("toggle ignored while %r", self.overlay)
            return False
        sink = self.sink
        if self.session.halted or (sink.paused and not sink.has_source):
            start = self.order.cursor if self.order.cursor >= 0 else 0
            return await self._run_switch(start, "user-toggle", user=True)

        self.session.reset_failures()
        try:
            if sink.paused:
                await sink.play()
                self.session.state = PlayerState.PLAYING
            else:
                await sink.pause()
                self.session.state = PlayerState.PAUSED
        except Exception as e:
            log.warning("Play/pause failed: %s", e)
            self.show_status(f"Play/pause failed: {e}", "error")
            return False
        self.notify()
        return True

    async def toggle_shuffle(self) -> bool:
        """Shuffle on: current track moves to the front, then position 1 plays.
        Shuffle off: sequential order, cursor stays on the current track."""
        current = self.order.current_track_index
        self.session.shuffle_on = not self.session.shuffle_on
        self._rebuild_order(current)
        log.info("Shuffle %s", "on" if self.session.shuffle_on else "off")
        self.notify()
        if self.session.shuffle_on and current is not None:
            target = 1 if len(self.order) > 1 else 0
            return await self._run_switch(target, "user-shuffle", user=True)
        return True

    async def network_restored(self) -> bool:
        """Connectivity is back: replay the current track if it stalled."""
        if self.current_track is None or not self.sink.paused or self.session.halted:
            return False
        log.info("Network restored, restarting %s", self.current_track.id)
        return await self._run_switch(self.order.cursor, "online")

    # ── Switch path ──

    async def _run_switch(self, position, reason: str, user: bool = False) -> bool:
        if not self.order.is_valid_position(position):
            log.debug("switch(%s): position %r out of range", reason, position)
            return False
        if self.session.advancing:
            log.debug("switch(%s) dropped: %s in flight", reason, self.session.switch.reason)
            return False
        if user:
            self.session.reset_failures()
        try:
            return await self._switch(position, reason)
        except SessionHalted:
            return False

    async def _switch(self, position: int, reason: str) -> bool:
        flight = self.session.switch.try_claim(reason)
        if flight is None:
            return False
        log.debug("switch: ENTER %s → position %d", reason, position)
        with flight:
            try:
                while True:
                    try:
                        await self._start_position(position)
                        return True
                    except Superseded:
                        log.debug("switch: position %d superseded", position)
                        return False
                    except InvalidSelection as e:
                        self.session.state = PlayerState.IDLE
                        self.show_status(str(e), "error")
                        return False
                    except ResolutionFailure as e:
                        position = await self._after_failure(position, e)
                        if position is None:
                            return False
                        reason = "retry-skip"
                        log.debug("switch: SKIP → position %d", position)
            finally:
                log.debug("switch: EXIT %s", reason)

    async def _after_failure(self, position: int, error) -> int | None:
        """Count a failed start; returns the position to try next or raises SessionHalted."""
        failures = self.session.record_failure()
        cause = error.cause if isinstance(error, StreamUnavailable) and error.cause else error
        log.warning("Track at position %d failed (%d/%d): %s",
                    position, failures, self.max_failures, cause)
        self.show_status(f"Track failed: {cause}", "error")
        if failures >= self.max_failures:
            await self._halt(failures)
        self.session.state = PlayerState.IDLE
        return self.order.step_from(position, +1)

    async def _halt(self, failures: int):
        try:
            await self.sink.pause()
        except Exception as e:
            log.debug("pause on halt: %s", e)
        self.session.state = PlayerState.STOPPED
        halted = SessionHalted(failures)
        log.error("%s", halted)
        self.show_status(str(halted), "error", blocking=True)
        raise halted

    async def _start_position(self, position: int):
        order = self.order
        track_index = order.track_at(position)
        if track_index is None or track_index >= len(self.tracks):
            raise Superseded()
        track = self.tracks[track_index]
        order.move_to(position)
        generation = self.session.next_generation()
        self.seek.reset()
        self.clear_status()

        if not track.id:
            raise InvalidSelection("Selected track missing a valid stream URL.")

        log.info("Playing %d/%d: %s", position + 1, len(order), track.label())
        self.session.state = PlayerState.RESOLVING
        self.session.switching_track = True
        self.show_overlay(LOADING_TRACK)

        async def start_stream(ref):
            if generation != self.session.generation:
                raise Superseded()
            await self.sink.detach()
            await self.sink.attach(ref)
            await self.sink.play()

        def on_retry(attempt, error, delay):
            if generation != self.session.generation:
                raise Superseded()
            self.session.state = PlayerState.RETRYING
            self.notify()

        try:
            await self.sink.detach()
            await self.resolver.resolve(
                track.id, self.resolve_attempts, use=start_stream, on_retry=on_retry)
        except ResolutionFailure:
            # A failure that lands after a newer selection belongs to no one
            if generation != self.session.generation:
                raise Superseded() from None
            raise
        finally:
            self.session.switching_track = False
            self.hide_overlay(LOADING_TRACK)

        if generation != self.session.generation:
            raise Superseded()
        self.session.record_success()
        # Shuffle may have swapped the order while we were resolving
        live = self.order.position_of(track_index)
        if live is not None:
            self.order.move_to(live)
        self.notify()

    # ── Sink events ──

    def dispatch(self, event):
        kind = event.kind
        session = self.session

        if kind is SinkEventKind.ENDED:
            if session.switching_track or session.advancing or session.halted:
                log.debug("ended ignored (switching=%s advancing=%s halted=%s)",
                          session.switching_track, session.advancing, session.halted)
                return
            self.spawn(self.advance(+1, "ended"), "advance-ended")

        elif kind is SinkEventKind.ERROR:
            if self.recovery.should_recover():
                self.spawn(self.recovery.recover(event.message), "self-heal")
            else:
                log.debug("sink error ignored: %s", event.message)

        elif kind is SinkEventKind.POSITION_ADVANCED:
            self._maybe_prewarm()
            self.notify("timeline")

        elif kind is SinkEventKind.BUFFERING_START:
            if self.overlay is None:
                self.show_overlay(BUFFERING)

        elif kind is SinkEventKind.BUFFERING_END:
            self.hide_overlay(BUFFERING)

        elif kind is SinkEventKind.STARTED:
            if not session.switching_track and session.state in (
                    PlayerState.PAUSED, PlayerState.IDLE):
                session.state = PlayerState.PLAYING
            self.notify()

        elif kind is SinkEventKind.PAUSED:
            if not session.switching_track and session.state is PlayerState.PLAYING:
                session.state = PlayerState.PAUSED
            self.notify()

        elif kind in (SinkEventKind.DURATION_KNOWN, SinkEventKind.DOWNLOAD_PROGRESS):
            self.notify("timeline")

    def _maybe_prewarm(self):
        sink = self.sink
        if not sink.duration_known or self.session.switching_track:
            return
        if sink.duration - (sink.position or 0.0) >= self.prewarm_threshold:
            return
        nxt = self.order.advance(+1)
        if nxt is None or nxt == self.order.cursor:
            return
        track = self.tracks[self.order.track_at(nxt)]
        if track.id and not track.prewarmed:
            self.spawn(self.resolver.prewarm(track), "prewarm")
