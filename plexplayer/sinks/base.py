# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Abstract base class for playback sinks (the single media output).

A sink plays one stream at a time and reports what happens to it through
one inbound channel, ``sink.events`` — an asyncio.Queue of SinkEvent.
The Orchestrator is the only consumer.

Every sink must implement attach, detach, play, pause and seek plus the
read-only position/duration/paused/has_source properties.  start() and
shutdown() default to no-ops for sinks without a process to manage.
"""

import asyncio
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class SinkEventKind(str, Enum):
    STARTED = "started"
    PAUSED = "paused"
    ENDED = "ended"
    BUFFERING_START = "buffering-start"
    BUFFERING_END = "buffering-end"
    ERROR = "error"
    DURATION_KNOWN = "duration-known"
    POSITION_ADVANCED = "position-advanced"
    DOWNLOAD_PROGRESS = "download-progress"


@dataclass(frozen=True)
class SinkEvent:
    kind: SinkEventKind
    position: float | None = None
    duration: float | None = None
    buffered: float | None = None
    message: str | None = None


class PlaybackSink(ABC):
    """Interface every playback output must implement."""

    def __init__(self):
        self.events: asyncio.Queue = asyncio.Queue()

    def emit(self, kind: SinkEventKind, **data) -> None:
        self.events.put_nowait(SinkEvent(kind, **data))

    @abstractmethod
    async def attach(self, reference) -> None:
        """Load *reference* (a StreamReference) as the current source."""

    @abstractmethod
    async def detach(self) -> None:
        """Stop and drop the current source, including buffered/decoder state."""

    @abstractmethod
    async def play(self) -> None: ...

    @abstractmethod
    async def pause(self) -> None: ...

    @abstractmethod
    async def seek(self, seconds: float) -> None: ...

    @property
    @abstractmethod
    def position(self) -> float: ...

    @property
    @abstractmethod
    def duration(self) -> float | None: ...

    @property
    @abstractmethod
    def paused(self) -> bool: ...

    @property
    @abstractmethod
    def has_source(self) -> bool: ...

    # -- Optional: override in sinks that know how much is downloaded --

    @property
    def buffered_end(self) -> float:
        return 0.0

    # -- Optional: override in sinks that own a process or connection --

    async def start(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass

    @property
    def duration_known(self) -> bool:
        d = self.duration
        return d is not None and math.isfinite(d) and d > 0
