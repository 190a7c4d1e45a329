# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Play order: a permutation of track indices plus a cursor into it.

A PlayOrder's sequence never changes after construction.  Shuffle toggles
and playlist loads build a new order and swap it in; only the cursor moves.
"""

import random


class PlayOrder:
    """Permutation of ``0..n-1`` with a cursor (``-1`` = nothing selected)."""

    def __init__(self, sequence=(), cursor: int = -1):
        self._sequence = tuple(sequence)
        self.cursor = -1
        self.move_to(cursor)

    # ── Construction ──

    @classmethod
    def sequential(cls, n: int, keep_index: int | None = None) -> "PlayOrder":
        """``[0..n-1]``; cursor on *keep_index* when given, else unset."""
        order = cls(range(max(0, n)))
        if keep_index is not None:
            pos = order.position_of(keep_index)
            if pos is not None:
                order.cursor = pos
        return order

    @classmethod
    def shuffled(cls, n: int, keep_index: int | None = None, rng=None) -> "PlayOrder":
        """Fisher-Yates over ``[0..n-1]``, with *keep_index* pinned to the front.

        The cursor is 0 when *keep_index* is given (the kept track stays
        current), otherwise unset.
        """
        rng = rng or random
        if keep_index is not None and not 0 <= keep_index < n:
            keep_index = None
        base = [i for i in range(max(0, n)) if i != keep_index]
        shuffled = fisher_yates(base, rng)
        if keep_index is None:
            return cls(shuffled)
        return cls([keep_index, *shuffled], cursor=0)

    # ── Queries ──

    def __len__(self):
        return len(self._sequence)

    def __iter__(self):
        return iter(self._sequence)

    def __repr__(self):
        return f"PlayOrder({list(self._sequence)!r}, cursor={self.cursor})"

    @property
    def sequence(self) -> tuple:
        return self._sequence

    def is_valid_position(self, position) -> bool:
        return isinstance(position, int) and 0 <= position < len(self._sequence)

    def track_at(self, position: int) -> int | None:
        if not self.is_valid_position(position):
            return None
        return self._sequence[position]

    @property
    def current_track_index(self) -> int | None:
        """Track index under the cursor, or None when nothing is selected."""
        return self.track_at(self.cursor)

    def position_of(self, track_index: int) -> int | None:
        """First order position holding *track_index*, or None."""
        try:
            return self._sequence.index(track_index)
        except ValueError:
            return None

    def advance(self, delta: int) -> int | None:
        """Cyclic position *delta* steps from the cursor. Does not move the cursor."""
        n = len(self._sequence)
        if not n:
            return None
        return (self.cursor + delta + n) % n

    def step_from(self, position: int, delta: int) -> int | None:
        """Cyclic position *delta* steps from an arbitrary *position*."""
        n = len(self._sequence)
        if not n:
            return None
        return (position + delta) % n

    # ── Cursor ──

    def move_to(self, position: int) -> None:
        """Point the cursor at *position* (``-1`` clears it)."""
        if position != -1 and not self.is_valid_position(position):
            raise IndexError(f"order position {position} out of range 0..{len(self._sequence) - 1}")
        self.cursor = position


def fisher_yates(items, rng=None) -> list:
    """Uniform shuffle of a copy of *items*."""
    rng = rng or random
    a = list(items)
    for i in range(len(a) - 1, 0, -1):
        j = rng.randrange(i + 1)
        a[i], a[j] = a[j], a[i]
    return a
