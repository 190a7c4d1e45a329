import asyncio

from fakes import FakeCatalog, make_player, make_tracks
from plexplayer.playback.models import Track
from plexplayer.playback.order import PlayOrder
from plexplayer.playback.orchestrator import LOADING_TRACK, fmt_time
from plexplayer.playback.session import PlayerState
from plexplayer.sinks.base import SinkEvent, SinkEventKind


def test_sequential_next_wraps_around():
    async def scenario():
        orch, sink, _, _ = make_player(3)
        assert await orch.play_at_position(0)
        cursors = [orch.order.cursor]
        for _ in range(3):
            assert await orch.next()
            cursors.append(orch.order.cursor)
        assert cursors == [0, 1, 2, 0]
        assert sink.attached_ids == ["t0", "t1", "t2", "t0"]
        assert orch.state is PlayerState.PLAYING
        assert not sink.paused

    asyncio.run(scenario())


def test_previous_wraps_to_last():
    async def scenario():
        orch, sink, _, _ = make_player(3)
        await orch.play_at_position(0)
        assert await orch.previous()
        assert orch.order.cursor == 2
        assert sink.attached_ids[-1] == "t2"

    asyncio.run(scenario())


def test_reentrant_advances_run_one_switch():
    async def scenario():
        orch, sink, tickets, _ = make_player(4)
        await orch.play_at_position(0)
        mints_before = len(tickets.calls)
        results = await asyncio.gather(orch.next(), orch.next(), orch.next())
        assert results == [True, False, False]
        assert orch.order.cursor == 1
        assert len(tickets.calls) == mints_before + 1
        assert not orch.session.advancing

    asyncio.run(scenario())


def test_out_of_range_position_is_ignored():
    async def scenario():
        orch, sink, tickets, _ = make_player(3)
        assert await orch.play_at_position(3) is False
        assert await orch.play_at_position(-1) is False
        assert tickets.calls == []
        assert sink.attached == []

    asyncio.run(scenario())


def test_track_without_id_shows_status_and_does_not_skip():
    async def scenario():
        orch, sink, tickets, _ = make_player(0)
        orch.tracks = [Track(id=None, title="Broken"), *make_tracks(2)]
        orch.order = PlayOrder.sequential(3)
        assert await orch.play_at_position(0) is False
        assert orch.status.message == "Selected track missing a valid stream URL."
        assert orch.status.level == "error"
        assert tickets.calls == []
        assert orch.order.cursor == 0
        assert orch.session.consecutive_failures == 0

    asyncio.run(scenario())


def test_one_failure_skips_to_next_position():
    async def scenario():
        orch, sink, tickets, sleep = make_player(3, failing={"t1"})
        assert await orch.play_at_position(1)
        assert tickets.calls == ["t1", "t1", "t2"]
        assert sleep.delays == [1.5]
        assert orch.order.cursor == 2
        assert sink.attached_ids == ["t2"]
        assert orch.session.consecutive_failures == 0
        assert orch.state is PlayerState.PLAYING

    asyncio.run(scenario())


def test_sink_start_failure_counts_as_attempt():
    async def scenario():
        orch, sink, tickets, _ = make_player(3)
        sink.fail_play_for = {"t0"}
        assert await orch.play_at_position(0)
        assert tickets.calls == ["t0", "t0", "t1"]
        assert orch.order.cursor == 1
        assert not sink.paused

    asyncio.run(scenario())


def test_four_consecutive_failures_stop_playback():
    async def scenario():
        orch, sink, tickets, _ = make_player(6, failing={"t0", "t1", "t2", "t3"})
        assert await orch.play_at_position(0) is False
        assert orch.state is PlayerState.STOPPED
        assert orch.session.halted
        assert orch.session.consecutive_failures == 4
        assert orch.status.message == "Stopped after 4 consecutive errors."
        assert orch.status.blocking
        assert tickets.calls == ["t0", "t0", "t1", "t1", "t2", "t2", "t3", "t3"]
        assert sink.paused
        assert sink.attached == []

        # no further automatic attempts
        assert await orch.advance(+1, "ended") is False
        orch.dispatch(SinkEvent(SinkEventKind.ENDED))
        await orch.settle()
        assert len(tickets.calls) == 8

        # an explicit user action starts a fresh budget
        assert await orch.next()
        assert orch.state is PlayerState.PLAYING
        assert orch.session.consecutive_failures == 0
        assert sink.attached_ids == ["t4"]

    asyncio.run(scenario())


def test_three_failures_then_success_keeps_going():
    async def scenario():
        orch, sink, _, _ = make_player(5, failing={"t0", "t1", "t2"})
        assert await orch.play_at_position(0)
        assert orch.order.cursor == 3
        assert not orch.session.halted
        assert orch.session.consecutive_failures == 0

    asyncio.run(scenario())


def test_ended_event_advances():
    async def scenario():
        orch, sink, _, _ = make_player(3)
        await orch.start()
        await orch.play_at_position(0)
        sink.emit(SinkEventKind.ENDED)
        for _ in range(5):
            await asyncio.sleep(0)
        await orch.settle()
        assert orch.order.cursor == 1
        assert sink.attached_ids == ["t0", "t1"]
        await orch.shutdown()

    asyncio.run(scenario())


def test_ended_ignored_during_switch():
    async def scenario():
        orch, sink, tickets, _ = make_player(3)
        await orch.play_at_position(0)
        orch.session.switching_track = True
        orch.dispatch(SinkEvent(SinkEventKind.ENDED))
        await orch.settle()
        assert orch.order.cursor == 0
        assert tickets.calls == ["t0"]

    asyncio.run(scenario())


def test_shuffle_on_keeps_current_first_and_plays_position_one():
    async def scenario():
        orch, sink, _, _ = make_player(5)
        assert await orch.play_track_index(2)
        assert await orch.toggle_shuffle()
        order = orch.order
        assert orch.session.shuffle_on
        assert order.sequence[0] == 2
        assert sorted(order) == [0, 1, 2, 3, 4]
        assert order.cursor == 1
        assert sink.attached_ids[-1] == f"t{order.sequence[1]}"
        assert sink.attached_ids[-1] != "t2"

    asyncio.run(scenario())


def test_shuffle_off_restores_sequence_without_interrupting():
    async def scenario():
        orch, sink, _, _ = make_player(5)
        await orch.play_track_index(2)
        await orch.toggle_shuffle()
        playing = orch.order.current_track_index
        attached = len(sink.attached)
        assert await orch.toggle_shuffle()
        assert not orch.session.shuffle_on
        assert list(orch.order) == [0, 1, 2, 3, 4]
        assert orch.order.cursor == playing
        assert len(sink.attached) == attached

    asyncio.run(scenario())


def test_shuffle_on_with_nothing_selected_only_reorders():
    async def scenario():
        orch, sink, _, _ = make_player(4)
        assert await orch.toggle_shuffle()
        assert orch.order.cursor == -1
        assert sink.attached == []

    asyncio.run(scenario())


def test_toggle_without_source_starts_cursor_track():
    async def scenario():
        orch, sink, _, _ = make_player(3)
        assert await orch.toggle_play_pause()
        assert sink.attached_ids == ["t0"]
        assert await orch.toggle_play_pause()
        assert sink.paused
        assert orch.state is PlayerState.PAUSED
        assert await orch.toggle_play_pause()
        assert not sink.paused
        assert orch.state is PlayerState.PLAYING
        assert sink.attached_ids == ["t0"]

    asyncio.run(scenario())


def test_toggle_ignored_while_loading():
    async def scenario():
        orch, sink, _, _ = make_player(3)
        orch.overlay = LOADING_TRACK
        assert await orch.toggle_play_pause() is False
        assert sink.attached == []

    asyncio.run(scenario())


def test_toggle_failure_sets_status():
    async def scenario():
        orch, sink, _, _ = make_player(3)
        await orch.play_at_position(0)
        await orch.toggle_play_pause()
        sink.fail_play_for = {"t0"}
        assert await orch.toggle_play_pause() is False
        assert orch.status.message == "Play/pause failed: load failed"
        assert orch.status.level == "error"

    asyncio.run(scenario())


def test_prewarm_near_end_of_track_runs_once():
    async def scenario():
        orch, sink, tickets, _ = make_player(3)
        await orch.play_at_position(0)
        sink.set_position(175.0)
        orch.dispatch(SinkEvent(SinkEventKind.POSITION_ADVANCED, position=175.0))
        await orch.settle()
        orch.dispatch(SinkEvent(SinkEventKind.POSITION_ADVANCED, position=176.0))
        await orch.settle()
        assert tickets.calls == ["t0", "t1"]
        assert orch.tracks[1].prewarmed
        # playback itself is untouched
        assert orch.order.cursor == 0
        assert sink.attached_ids == ["t0"]

    asyncio.run(scenario())


def test_no_prewarm_with_time_left():
    async def scenario():
        orch, sink, tickets, _ = make_player(3)
        await orch.play_at_position(0)
        sink.set_position(100.0)
        orch.dispatch(SinkEvent(SinkEventKind.POSITION_ADVANCED, position=100.0))
        await orch.settle()
        assert tickets.calls == ["t0"]

    asyncio.run(scenario())


def test_buffering_overlay_follows_sink():
    async def scenario():
        orch, sink, _, _ = make_player(3)
        await orch.play_at_position(0)
        orch.dispatch(SinkEvent(SinkEventKind.BUFFERING_START))
        assert orch.overlay == "Buffering…"
        orch.dispatch(SinkEvent(SinkEventKind.BUFFERING_END))
        assert orch.overlay is None

    asyncio.run(scenario())


def test_network_restored_replays_stalled_track():
    async def scenario():
        orch, sink, tickets, _ = make_player(3)
        await orch.play_at_position(1)
        assert await orch.network_restored() is False  # still playing
        await sink.pause()
        assert await orch.network_restored()
        assert sink.attached_ids == ["t1", "t1"]
        assert not sink.paused

    asyncio.run(scenario())


def test_load_playlist_drops_tracks_without_id_and_autostarts():
    async def scenario():
        catalog = FakeCatalog({"p1": ("Mix", [Track(id=None, title="?"), *make_tracks(2, "a")])})
        orch, sink, _, _ = make_player(3, catalog=catalog)
        await orch.play_at_position(2)
        assert await orch.load_playlist("p1", auto_start=True)
        assert orch.playlist_title == "Mix"
        assert [t.id for t in orch.tracks] == ["a0", "a1"]
        assert orch.order.cursor == 0
        assert sink.attached_ids[-1] == "a0"
        assert orch.status.message == ""

    asyncio.run(scenario())


def test_load_playlist_without_autostart_leaves_sink_idle():
    async def scenario():
        catalog = FakeCatalog({"p1": ("Mix", make_tracks(2, "a"))})
        orch, sink, _, _ = make_player(3, catalog=catalog)
        await orch.play_at_position(0)
        assert await orch.load_playlist("p1")
        assert orch.order.cursor == -1
        assert not sink.has_source
        assert orch.state is PlayerState.IDLE

    asyncio.run(scenario())


def test_load_empty_playlist_reports_no_tracks():
    async def scenario():
        catalog = FakeCatalog({"p1": ("Empty", [Track(id=None, title="?")])})
        orch, _, _, _ = make_player(3, catalog=catalog)
        assert await orch.load_playlist("p1") is False
        assert orch.status.message == "No tracks found in this playlist."
        assert len(orch.order) == 0

    asyncio.run(scenario())


def test_load_playlist_failure_reports_error():
    async def scenario():
        orch, _, _, _ = make_player(3, catalog=FakeCatalog(error="HTTP 500 boom"))
        assert await orch.load_playlist("p1") is False
        assert orch.status.message == "Error loading playlist: HTTP 500 boom"
        assert orch.overlay is None

    asyncio.run(scenario())


def test_playlist_load_supersedes_pending_resolution():
    async def scenario():
        catalog = FakeCatalog({"p2": ("Other", make_tracks(2, "b"))})
        orch, sink, tickets, _ = make_player(3, catalog=catalog)
        tickets.gate = asyncio.Event()
        pending = asyncio.create_task(orch.play_at_position(0))
        for _ in range(3):
            await asyncio.sleep(0)
        assert await orch.load_playlist("p2")
        tickets.gate.set()
        assert await pending is False
        assert sink.attached == []
        assert orch.session.consecutive_failures == 0
        assert [t.id for t in orch.tracks] == ["b0", "b1"]

    asyncio.run(scenario())


def test_failure_after_playlist_load_does_not_skip_into_new_playlist():
    async def scenario():
        catalog = FakeCatalog({"p2": ("Other", make_tracks(2, "b"))})
        orch, sink, tickets, _ = make_player(3, failing={"t0"}, catalog=catalog)
        pending = asyncio.create_task(orch.play_at_position(0))
        # first attempt fails, hold the retry
        while len(tickets.calls) < 2:
            await asyncio.sleep(0)
        tickets.gate = asyncio.Event()
        assert await orch.load_playlist("p2")
        tickets.gate.set()
        assert await pending is False
        assert tickets.calls == ["t0", "t0"]
        assert sink.attached == []
        assert orch.session.consecutive_failures == 0
        assert orch.order.cursor == -1
        assert orch.state is PlayerState.IDLE

    asyncio.run(scenario())


def test_older_playlist_load_does_not_overwrite_newer():
    async def scenario():
        catalog = FakeCatalog({
            "A": ("Alpha", make_tracks(2, "a")),
            "B": ("Beta", make_tracks(3, "b")),
        })
        catalog.gates = {"A": asyncio.Event(), "B": asyncio.Event()}
        orch, _, _, _ = make_player(0, catalog=catalog)
        load_a = asyncio.create_task(orch.load_playlist("A"))
        await asyncio.sleep(0)
        load_b = asyncio.create_task(orch.load_playlist("B"))
        while len(catalog.requested) < 2:
            await asyncio.sleep(0)
        catalog.gates["B"].set()
        assert await load_b
        catalog.gates["A"].set()
        assert await load_a is False
        assert orch.playlist_id == "B"
        assert orch.playlist_title == "Beta"
        assert [t.id for t in orch.tracks] == ["b0", "b1", "b2"]
        assert orch.status.message == ""
        assert orch.overlay is None

    asyncio.run(scenario())


def test_listeners_are_notified():
    async def scenario():
        orch, _, _, _ = make_player(3)
        reasons = []
        orch.add_listener(lambda o, reason: reasons.append(reason))
        await orch.play_at_position(0)
        assert "state" in reasons

    asyncio.run(scenario())


def test_snapshot_reports_timeline():
    async def scenario():
        orch, sink, _, _ = make_player(3)
        await orch.play_at_position(0)
        sink.set_position(65.0)
        snap = orch.snapshot()
        assert snap["state"] == "playing"
        assert snap["track"]["id"] == "t0"
        assert snap["elapsed_text"] == "1:05"
        assert snap["duration_text"] == "3:00"
        assert snap["remaining_text"] == "-1:55"
        assert snap["playing"] is True
        assert snap["halted"] is False

    asyncio.run(scenario())


def test_fmt_time():
    assert fmt_time(0) == "0:00"
    assert fmt_time(59.9) == "0:59"
    assert fmt_time(600) == "10:00"
    assert fmt_time(None) == "0:00"
    assert fmt_time(float("nan")) == "0:00"
