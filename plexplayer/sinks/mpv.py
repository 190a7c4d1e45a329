# PlexPlayer
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
MpvSink — playback sink backed by one long-lived ``mpv --idle`` process.

Commands go over mpv's JSON IPC socket with a request_id so replies can be
matched; property observations and events from the same socket are turned
into SinkEvents:

    time-pos            → position-advanced
    duration            → duration-known
    pause               → started / paused        (only while a file is loaded)
    paused-for-cache    → buffering-start / buffering-end
    demuxer-cache-time  → download-progress
    end-file eof        → ended
    end-file error      → error
    end-file stop       → (ignored, caused by our own loadfile/stop)
"""

import asyncio
import json
import logging
import os

from plexplayer.playback.errors import SinkError
from plexplayer.sinks.base import PlaybackSink, SinkEventKind

log = logging.getLogger(__name__)

OBSERVED_PROPERTIES = (
    "time-pos",
    "duration",
    "pause",
    "paused-for-cache",
    "demuxer-cache-time",
)

COMMAND_TIMEOUT = 5


class MpvSink(PlaybackSink):
    def __init__(self, binary: str = "mpv", ao: str = "pulse",
                 ipc_socket: str = "/tmp/plexplayer-mpv.sock", load_timeout: float = 15):
        super().__init__()
        self.binary = binary
        self.ao = ao
        self.load_timeout = load_timeout
        self.process: asyncio.subprocess.Process | None = None
        self._ipc_socket = ipc_socket
        self._ipc_reader: asyncio.StreamReader | None = None
        self._ipc_writer: asyncio.StreamWriter | None = None
        self._ipc_task: asyncio.Task | None = None
        self._request_id = 0
        self._replies: dict[int, asyncio.Future] = {}
        self._side_tasks: set[asyncio.Task] = set()
        # Mirrored mpv state (updated from property-change events)
        self._source = None
        self._loaded = False
        self._load_waiter: asyncio.Future | None = None
        self._pending_seek: float | None = None
        self._position = 0.0
        self._duration: float | None = None
        self._paused = True
        self._buffering = False
        self._buffered = 0.0

    # ── Properties ──

    @property
    def position(self) -> float:
        return self._position

    @property
    def duration(self) -> float | None:
        return self._duration

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def has_source(self) -> bool:
        return self._source is not None

    @property
    def buffered_end(self) -> float:
        return self._buffered

    # ── mpv lifecycle ──

    async def start(self) -> None:
        """Launch mpv in idle mode and connect to its IPC socket."""
        try:
            os.unlink(self._ipc_socket)
        except FileNotFoundError:
            pass

        env = os.environ.copy()
        env.setdefault('XDG_RUNTIME_DIR', f'/run/user/{os.getuid()}')
        self.process = await asyncio.create_subprocess_exec(
            self.binary, f'--ao={self.ao}',
            '--idle=yes', '--no-video', '--no-terminal',
            '--pause=yes', '--cache=yes',
            f'--input-ipc-server={self._ipc_socket}',
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            env=env,
        )

        connected = False
        for _ in range(50):  # up to 5 s
            await asyncio.sleep(0.1)
            if self.process.returncode is not None:
                raise SinkError("mpv exited immediately")
            if os.path.exists(self._ipc_socket):
                try:
                    self._ipc_reader, self._ipc_writer = \
                        await asyncio.open_unix_connection(self._ipc_socket)
                    connected = True
                    break
                except (ConnectionRefusedError, FileNotFoundError):
                    continue

        if not connected:
            raise SinkError("Could not connect to mpv IPC")

        self._ipc_task = asyncio.create_task(self._read_ipc_events())
        for i, name in enumerate(OBSERVED_PROPERTIES, start=1):
            await self._command('observe_property', i, name)
        log.info("mpv started (pid %s, ipc %s)", self.process.pid, self._ipc_socket)

    async def shutdown(self) -> None:
        if self._ipc_writer:
            try:
                await self._command('quit')
            except SinkError:
                pass
        if self._ipc_task:
            self._ipc_task.cancel()
            try:
                await self._ipc_task
            except asyncio.CancelledError:
                pass
            self._ipc_task = None
        await self._close_ipc()
        if self.process and self.process.returncode is None:
            self.process.terminate()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=2)
            except asyncio.TimeoutError:
                self.process.kill()
        self.process = None
        self._source = None
        self._loaded = False

    # ── Sink commands ──

    async def attach(self, reference) -> None:
        self._cancel_load_waiter()
        self._source = reference
        self._loaded = False
        self._pending_seek = None
        self._position = 0.0
        self._duration = None
        self._buffered = 0.0
        self._load_waiter = asyncio.get_running_loop().create_future()
        await self._command('loadfile', reference.url, 'replace')
        log.debug("mpv: loadfile %s", reference.track_id)

    async def detach(self) -> None:
        self._cancel_load_waiter()
        had_source = self._source is not None
        self._source = None
        self._loaded = False
        self._pending_seek = None
        self._position = 0.0
        self._duration = None
        self._buffered = 0.0
        if had_source and self._ipc_writer:
            await self._command('stop')

    async def play(self) -> None:
        """Unpause; waits for a pending load and raises SinkError if it fails."""
        if self._source is None:
            raise SinkError("no source attached")
        await self._command('set_property', 'pause', False)
        waiter = self._load_waiter
        if waiter is not None and not self._loaded:
            try:
                await asyncio.wait_for(asyncio.shield(waiter), timeout=self.load_timeout)
            except asyncio.TimeoutError:
                raise SinkError(f"timed out loading stream after {self.load_timeout}s")
            except asyncio.CancelledError:
                if waiter.cancelled():
                    raise SinkError("stream load abandoned")
                raise

    async def pause(self) -> None:
        if self._ipc_writer:
            await self._command('set_property', 'pause', True)
        self._paused = True

    async def seek(self, seconds: float) -> None:
        if self._source is None:
            raise SinkError("no source attached")
        if not self._loaded:
            self._pending_seek = seconds
            return
        await self._command('seek', seconds, 'absolute')
        self._position = seconds

    # ── IPC communication ──

    async def _command(self, *args):
        if not self._ipc_writer:
            raise SinkError("mpv IPC not connected")
        self._request_id += 1
        request_id = self._request_id
        reply = asyncio.get_running_loop().create_future()
        self._replies[request_id] = reply
        try:
            self._ipc_writer.write(
                json.dumps({'command': list(args), 'request_id': request_id}).encode() + b'\n')
            await self._ipc_writer.drain()
            msg = await asyncio.wait_for(reply, timeout=COMMAND_TIMEOUT)
        except (ConnectionError, asyncio.TimeoutError) as e:
            raise SinkError(f"mpv {args[0]}: {e or 'timeout'}") from e
        finally:
            self._replies.pop(request_id, None)
        if msg.get('error') != 'success':
            raise SinkError(f"mpv {args[0]}: {msg.get('error')}")
        return msg.get('data')

    async def _close_ipc(self):
        if self._ipc_writer:
            try:
                self._ipc_writer.close()
                await self._ipc_writer.wait_closed()
            except Exception:
                pass
        self._ipc_reader = None
        self._ipc_writer = None

    async def _read_ipc_events(self):
        """Background task — routes replies to waiters, events to the queue."""
        try:
            while self._ipc_reader:
                line = await self._ipc_reader.readline()
                if not line:
                    break  # EOF, mpv closed
                try:
                    msg = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if 'event' in msg:
                    self._handle_event(msg)
                    continue
                reply = self._replies.get(msg.get('request_id'))
                if reply is not None and not reply.done():
                    reply.set_result(msg)
        except asyncio.CancelledError:
            return
        except Exception as e:
            log.debug("IPC reader ended: %s", e)

        # mpv went away without shutdown()
        for reply in self._replies.values():
            if not reply.done():
                reply.set_exception(SinkError("mpv IPC closed"))
        self._ipc_writer = None
        self._ipc_reader = None
        if self._source is not None:
            log.warning("mpv exited during playback")
            self._fail_load("mpv exited")
            self.emit(SinkEventKind.ERROR, message="mpv exited")

    def _handle_event(self, msg: dict) -> None:
        event = msg.get('event')
        if event == 'property-change':
            self._handle_property(msg.get('name'), msg.get('data'))
        elif event == 'file-loaded':
            self._loaded = True
            if self._load_waiter and not self._load_waiter.done():
                self._load_waiter.set_result(True)
            if self._pending_seek is not None:
                seconds, self._pending_seek = self._pending_seek, None
                task = asyncio.create_task(self._apply_seek(seconds))
                self._side_tasks.add(task)
                task.add_done_callback(self._side_tasks.discard)
        elif event == 'end-file':
            reason = msg.get('reason')
            if reason == 'eof':
                self._loaded = False
                self.emit(SinkEventKind.ENDED, position=self._position, duration=self._duration)
            elif reason == 'error':
                self._loaded = False
                detail = msg.get('file_error') or 'playback error'
                self._fail_load(detail)
                self.emit(SinkEventKind.ERROR, message=detail, position=self._position)

    def _handle_property(self, name, data) -> None:
        if name == 'time-pos':
            if data is not None:
                self._position = float(data)
                self.emit(SinkEventKind.POSITION_ADVANCED,
                          position=self._position, duration=self._duration)
        elif name == 'duration':
            if data:
                self._duration = float(data)
                self.emit(SinkEventKind.DURATION_KNOWN, duration=self._duration)
        elif name == 'pause':
            self._paused = bool(data)
            if self._source is not None:
                self.emit(SinkEventKind.PAUSED if self._paused else SinkEventKind.STARTED,
                          position=self._position)
        elif name == 'paused-for-cache':
            if data and not self._buffering:
                self._buffering = True
                self.emit(SinkEventKind.BUFFERING_START, position=self._position)
            elif not data and self._buffering:
                self._buffering = False
                self.emit(SinkEventKind.BUFFERING_END, position=self._position)
        elif name == 'demuxer-cache-time':
            if data is not None:
                self._buffered = float(data)
                self.emit(SinkEventKind.DOWNLOAD_PROGRESS,
                          buffered=self._buffered, duration=self._duration)

    async def _apply_seek(self, seconds: float) -> None:
        try:
            await self._command('seek', seconds, 'absolute')
            self._position = seconds
        except SinkError as e:
            log.warning("Deferred seek to %.1fs failed: %s", seconds, e)

    def _fail_load(self, detail: str) -> None:
        if self._load_waiter and not self._load_waiter.done():
            self._load_waiter.set_exception(SinkError(detail))
            # Retrieved here so an unawaited failure is not reported as lost
            self._load_waiter.exception()

    def _cancel_load_waiter(self) -> None:
        if self._load_waiter and not self._load_waiter.done():
            self._load_waiter.cancel()
        self._load_waiter = None
