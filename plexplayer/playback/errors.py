# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""Exception hierarchy for the playback core and its HTTP/sink collaborators."""


class PlayerError(Exception):
    """Base class for every error raised by PlexPlayer."""


class ResolutionFailure(PlayerError):
    """A track could not be turned into a playing stream."""


class StreamUnavailable(ResolutionFailure):
    """Ticket mint or sink start failed for every allowed attempt."""

    def __init__(self, track_id, attempts: int, cause: BaseException | None = None):
        self.track_id = track_id
        self.attempts = attempts
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"stream for {track_id} unavailable after {attempts} attempt(s){detail}")


class SessionHalted(PlayerError):
    """Too many consecutive start failures; playback stopped until user action."""

    def __init__(self, failures: int):
        self.failures = failures
        super().__init__(f"Stopped after {failures} consecutive errors.")


class MidStreamFault(PlayerError):
    """The sink reported an error while a track was playing."""


class SeekFailure(PlayerError):
    """Committing a manual seek failed."""


class InvalidSelection(PlayerError):
    """A play request pointed at a track that cannot be streamed."""


class Superseded(PlayerError):
    """A newer selection replaced the one this work was started for."""


class TicketError(ResolutionFailure):
    """The ticket endpoint answered with a non-success HTTP status."""

    def __init__(self, status: int, track_id=None):
        self.status = status
        self.track_id = track_id
        super().__init__(f"stream ticket {status}")


class CatalogError(PlayerError):
    """Playlist listing or playlist fetch failed."""


class SinkError(PlayerError):
    """The playback sink rejected a command or failed to load a stream."""
