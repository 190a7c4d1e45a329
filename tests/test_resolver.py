import asyncio

import pytest

from fakes import FakeTickets, SleepRecorder
from plexplayer.playback.errors import (
    ResolutionFailure,
    SinkError,
    StreamUnavailable,
    Superseded,
    TicketError,
)
from plexplayer.playback.models import Track
from plexplayer.playback.resolver import StreamResolver


def _resolver(failing=()):
    tickets = FakeTickets(failing)
    sleep = SleepRecorder()
    return StreamResolver(tickets, sleep=sleep), tickets, sleep


def test_backoff_is_linear_and_capped():
    resolver, _, _ = _resolver()
    assert resolver.backoff_for(1) == 1.5
    assert resolver.backoff_for(2) == 3.0
    assert resolver.backoff_for(5) == 3.0


def test_reference_carries_ticket_and_track_id():
    async def scenario():
        resolver, tickets, sleep = _resolver()
        ref = await resolver.resolve("42")
        assert ref.track_id == "42"
        assert ref.ticket == "tk1"
        assert ref.url == "http://proxy.test/plexproxy/api/stream/tk1?rk=42"
        assert sleep.delays == []

    asyncio.run(scenario())


def test_every_attempt_mints_a_fresh_ticket():
    async def scenario():
        resolver, tickets, _ = _resolver()
        first = await resolver.resolve("a")
        second = await resolver.resolve("a")
        assert first.ticket != second.ticket
        assert tickets.calls == ["a", "a"]

    asyncio.run(scenario())


def test_two_failed_attempts_raise_resolution_failure():
    async def scenario():
        resolver, tickets, sleep = _resolver(failing={"x"})
        with pytest.raises(ResolutionFailure) as info:
            await resolver.resolve("x", max_attempts=2)
        assert isinstance(info.value, StreamUnavailable)
        assert isinstance(info.value.cause, TicketError)
        assert info.value.cause.status == 500
        assert tickets.calls == ["x", "x"]
        # no wait after the last attempt
        assert sleep.delays == [1.5]

    asyncio.run(scenario())


def test_three_attempts_back_off_up_to_cap():
    async def scenario():
        resolver, _, sleep = _resolver(failing={"x"})
        with pytest.raises(StreamUnavailable):
            await resolver.resolve("x", max_attempts=3)
        assert sleep.delays == [1.5, 3.0]

    asyncio.run(scenario())


def test_use_failure_is_retried_with_a_new_ticket():
    async def scenario():
        resolver, tickets, _ = _resolver()
        seen = []

        async def use(ref):
            seen.append(ref.ticket)
            if len(seen) == 1:
                raise SinkError("load failed")

        ref = await resolver.resolve("a", 2, use=use)
        assert seen == ["tk1", "tk2"]
        assert ref.ticket == "tk2"

    asyncio.run(scenario())


def test_on_retry_sees_attempt_and_delay():
    async def scenario():
        resolver, _, _ = _resolver(failing={"x"})
        retries = []
        with pytest.raises(StreamUnavailable):
            await resolver.resolve("x", 2, on_retry=lambda a, e, d: retries.append((a, d)))
        assert retries == [(1, 1.5)]

    asyncio.run(scenario())


def test_superseded_is_not_retried():
    async def scenario():
        resolver, tickets, sleep = _resolver()

        async def use(ref):
            raise Superseded()

        with pytest.raises(Superseded):
            await resolver.resolve("a", 2, use=use)
        assert tickets.calls == ["a"]
        assert sleep.delays == []

    asyncio.run(scenario())


def test_prewarm_mints_once_per_track():
    async def scenario():
        resolver, tickets, _ = _resolver()
        track = Track(id="7", title="Seven")
        assert await resolver.prewarm(track) is True
        assert await resolver.prewarm(track) is False
        assert track.prewarmed
        assert tickets.calls == ["7"]

    asyncio.run(scenario())


def test_prewarm_swallows_errors():
    async def scenario():
        resolver, tickets, _ = _resolver(failing={"7"})
        track = Track(id="7", title="Seven")
        assert await resolver.prewarm(track) is True
        assert tickets.calls == ["7"]

    asyncio.run(scenario())


def test_prewarm_skips_tracks_without_id():
    async def scenario():
        resolver, tickets, _ = _resolver()
        assert await resolver.prewarm(Track(id=None, title="?")) is False
        assert tickets.calls == []

    asyncio.run(scenario())
