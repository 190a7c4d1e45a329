import asyncio

import pytest

from plexplayer.playback.errors import SinkError
from plexplayer.playback.models import StreamReference
from plexplayer.sinks.base import SinkEventKind
from plexplayer.sinks.mpv import MpvSink

REF = StreamReference("http://proxy/plexproxy/api/stream/tk?rk=1", "tk", "1")


def _drain(sink):
    events = []
    while not sink.events.empty():
        events.append(sink.events.get_nowait())
    return events


def test_property_changes_become_sink_events():
    async def scenario():
        sink = MpvSink()
        sink._source = REF
        sink._handle_event({"event": "property-change", "name": "duration", "data": 200.5})
        sink._handle_event({"event": "property-change", "name": "time-pos", "data": 3.5})
        sink._handle_event({"event": "property-change", "name": "pause", "data": False})
        sink._handle_event({"event": "property-change", "name": "paused-for-cache", "data": True})
        sink._handle_event({"event": "property-change", "name": "paused-for-cache", "data": True})
        sink._handle_event({"event": "property-change", "name": "paused-for-cache", "data": False})
        sink._handle_event({"event": "property-change", "name": "demuxer-cache-time", "data": 40})
        kinds = [e.kind for e in _drain(sink)]
        assert kinds == [
            SinkEventKind.DURATION_KNOWN,
            SinkEventKind.POSITION_ADVANCED,
            SinkEventKind.STARTED,
            SinkEventKind.BUFFERING_START,
            SinkEventKind.BUFFERING_END,
            SinkEventKind.DOWNLOAD_PROGRESS,
        ]
        assert sink.position == 3.5
        assert sink.duration == 200.5
        assert sink.buffered_end == 40.0
        assert not sink.paused

    asyncio.run(scenario())


def test_pause_changes_without_source_are_silent():
    async def scenario():
        sink = MpvSink()
        sink._handle_event({"event": "property-change", "name": "pause", "data": True})
        assert _drain(sink) == []

    asyncio.run(scenario())


def test_end_file_reasons():
    async def scenario():
        sink = MpvSink()
        sink._source = REF
        sink._handle_event({"event": "end-file", "reason": "stop"})
        sink._handle_event({"event": "end-file", "reason": "eof"})
        sink._handle_event({"event": "end-file", "reason": "error", "file_error": "loading failed"})
        events = _drain(sink)
        assert [e.kind for e in events] == [SinkEventKind.ENDED, SinkEventKind.ERROR]
        assert events[1].message == "loading failed"

    asyncio.run(scenario())


def test_file_loaded_releases_waiter_and_load_error_fails_it():
    async def scenario():
        loop = asyncio.get_running_loop()
        sink = MpvSink()
        sink._source = REF
        sink._load_waiter = loop.create_future()
        sink._handle_event({"event": "file-loaded"})
        assert sink._load_waiter.result() is True

        sink._load_waiter = loop.create_future()
        sink._loaded = False
        sink._handle_event({"event": "end-file", "reason": "error"})
        with pytest.raises(SinkError):
            sink._load_waiter.result()

    asyncio.run(scenario())


def test_seek_before_load_is_deferred():
    async def scenario():
        sink = MpvSink()
        sink._source = REF
        await sink.seek(42.0)
        assert sink._pending_seek == 42.0

    asyncio.run(scenario())


def test_commands_need_a_source():
    async def scenario():
        sink = MpvSink()
        with pytest.raises(SinkError):
            await sink.play()
        with pytest.raises(SinkError):
            await sink.seek(1.0)

    asyncio.run(scenario())
