# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""Transient playback state owned by one Orchestrator."""
from dataclasses import dataclass, field
from enum import Enum

from plexplayer.playback.single_flight import SingleFlight


class PlayerState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    RETRYING = "retrying"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"  # failure budget spent; terminal until user action


@dataclass
class Status:
    """User-visible status line."""
    message: str = ""
    level: str = "info"  # info | error
    blocking: bool = False

    def to_dict(self) -> dict:
        return {"message": self.message, "level": self.level, "blocking": self.blocking}


@dataclass
class PlaybackSession:
    switch: SingleFlight = field(default_factory=lambda: SingleFlight("switch"))
    recovering: SingleFlight = field(default_factory=lambda: SingleFlight("recovery"))
    switching_track: bool = False  # held from detach until the new stream starts
    consecutive_failures: int = 0
    shuffle_on: bool = False
    generation: int = 0
    state: PlayerState = PlayerState.IDLE

    @property
    def advancing(self) -> bool:
        return self.switch.busy

    @property
    def error_recovering(self) -> bool:
        return self.recovering.busy

    @property
    def halted(self) -> bool:
        return self.state is PlayerState.STOPPED

    def next_generation(self) -> int:
        self.generation += 1
        return self.generation

    def record_success(self) -> None:
        self.consecutive_failures = 0
        self.state = PlayerState.PLAYING

    def record_failure(self) -> int:
        self.consecutive_failures += 1
        return self.consecutive_failures

    def reset_failures(self) -> None:
        """Explicit user action: leave STOPPED and start a fresh failure budget."""
        self.consecutive_failures = 0
        if self.state is PlayerState.STOPPED:
            self.state = PlayerState.IDLE
