"""
Channel set of an exec connection.

Kubernetes multiplexes stdin, stdout, stderr and an error/status channel
over one websocket, each frame prefixed with its channel number. A single
pump owns every read from the socket and routes frames to bounded
per-channel buffers; readers only ever touch their own buffer. Because all channels share
the socket, a socket failure is fanned out to every reader as a
TransportError.
"""

import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from websocket import WebSocketException

from ..api.errors import ChannelClosedError, ChannelError, TransportError
from ..api.models import AttachParams

logger = logging.getLogger(__name__)

STDIN_CHANNEL = 0
STDOUT_CHANNEL = 1
STDERR_CHANNEL = 2
ERROR_CHANNEL = 3

DEFAULT_MAX_CHUNKS = 64

_EOF = object()


def _as_bytes(data) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


class ChannelReader:
    """
    Readable end of one output channel. ``read()`` returns b"" at end of stream.

    At most ``max_chunks`` chunks are held. While the reader is full the pump
    waits in ``put()`` and stops reading the socket, so a slow consumer
    throttles the remote process instead of growing this buffer.
    """

    def __init__(self, channel: int, max_chunks: int = DEFAULT_MAX_CHUNKS):
        self.channel = channel
        self._max_chunks = max_chunks
        self._chunks: Deque[bytes] = deque()
        self._end: Any = None
        self._eof = False
        self._released = False
        self._readable = asyncio.Event()
        self._writable = asyncio.Event()
        self._writable.set()

    @property
    def buffered(self) -> int:
        return len(self._chunks)

    async def put(self, data: bytes) -> None:
        """Called by the pump. Waits while the reader is full."""
        while self._is_full():
            self._writable.clear()
            await self._writable.wait()
        self.feed(data)

    def feed(self, item) -> None:
        """Non-blocking delivery: bytes, or an exception that ends the stream."""
        if self._end is not None:
            return
        if isinstance(item, BaseException):
            self._end = item
            self._writable.set()
        else:
            self._chunks.append(item)
        self._readable.set()

    def feed_eof(self) -> None:
        if self._end is None:
            self._end = _EOF
        self._writable.set()
        self._readable.set()

    def release(self) -> None:
        """Stop applying backpressure; a pump blocked in ``put()`` carries on."""
        self._released = True
        self._writable.set()

    async def read(self) -> bytes:
        while True:
            if self._eof:
                return b""
            if self._chunks:
                data = self._chunks.popleft()
                if not self._is_full():
                    self._writable.set()
                return data
            if self._end is not None:
                self._eof = True
                if isinstance(self._end, BaseException):
                    raise self._end
                return b""
            self._readable.clear()
            await self._readable.wait()

    def _is_full(self) -> bool:
        return (
            len(self._chunks) >= self._max_chunks
            and self._end is None
            and not self._released
        )


class ChannelWriter:
    """Writable end of the stdin channel. Every write is sent immediately."""

    def __init__(self, transport: "WebSocketTransport"):
        self._transport = transport
        self._closed = False

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ChannelError("stdin channel already closed")
        await self._transport.send(STDIN_CHANNEL, data)

    async def close(self) -> None:
        # The v4 exec protocol has no stdin half-close frame; stop sending.
        self._closed = True


class WebSocketTransport:
    """
    Owns the exec websocket and demultiplexes it.

    The blocking ``update()`` call runs in a worker thread, one poll at a
    time, so a shutdown request waits at most ``poll_interval`` for the
    in-flight read to finish instead of interrupting it mid-frame.
    """

    def __init__(self, ws, poll_interval: float = 0.2):
        """
        Args:
            ws: kubernetes.stream.ws_client.WSClient (binary mode)
            poll_interval: Seconds each blocking socket poll may take
        """
        self._ws = ws
        self._poll_interval = poll_interval
        self._readers: Dict[int, ChannelReader] = {}
        self._status_buffer = b""
        self._stopping = False
        self._pump_task: Optional[asyncio.Task] = None
        self.closed = asyncio.Event()
        self.failure: Optional[BaseException] = None
        self.exit_status: Optional[Dict[str, Any]] = None

    def reader(self, channel: int) -> ChannelReader:
        reader = self._readers.get(channel)
        if reader is None:
            reader = ChannelReader(channel)
            self._readers[channel] = reader
        return reader

    def start(self) -> None:
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(self._pump(), name="exec-pump")

    async def send(self, channel: int, data: bytes) -> None:
        if self.failure is not None:
            raise TransportError(f"connection failed: {self.failure}")
        if self.closed.is_set():
            raise ChannelClosedError("remote side closed the connection")
        try:
            await asyncio.to_thread(self._ws.write_channel, channel, data)
        except (WebSocketException, OSError) as e:
            self._fail(e)
            raise TransportError(str(e)) from e

    async def aclose(self) -> None:
        """Stop the pump and close the socket. Idempotent."""
        self._stopping = True
        for reader in self._readers.values():
            reader.release()
        if self._pump_task is not None:
            await asyncio.gather(self._pump_task, return_exceptions=True)
        try:
            self._ws.close()
        except (WebSocketException, OSError) as e:
            logger.debug(f"Error closing exec websocket: {e}")
        self._finish()

    async def _pump(self) -> None:
        try:
            while not self._stopping and self.failure is None and self._ws.is_open():
                chunks = await asyncio.to_thread(self._poll)
                await self._dispatch(chunks)
            if self.failure is not None:
                return
            # Frames buffered before the close still belong to the session
            await self._dispatch(await asyncio.to_thread(self._drain))
        except (WebSocketException, OSError) as e:
            self._fail(e)
            return
        self._finish()

    def _poll(self) -> Dict[int, bytes]:
        self._ws.update(timeout=self._poll_interval)
        return self._drain()

    def _drain(self) -> Dict[int, bytes]:
        chunks = {}
        for channel in (STDOUT_CHANNEL, STDERR_CHANNEL, ERROR_CHANNEL):
            if self._ws.peek_channel(channel):
                data = self._ws.read_channel(channel)
                if data:
                    chunks[channel] = _as_bytes(data)
        return chunks

    async def _dispatch(self, chunks: Dict[int, bytes]) -> None:
        for channel, data in chunks.items():
            if channel == ERROR_CHANNEL:
                self._status_buffer += data
                continue
            reader = self._readers.get(channel)
            if reader is not None:
                await reader.put(data)
            else:
                logger.debug(f"Dropping {len(data)} bytes for unopened channel {channel}")

    def _parse_status(self) -> None:
        if not self._status_buffer or self.exit_status is not None:
            return
        try:
            self.exit_status = json.loads(self._status_buffer.decode("utf-8", "replace"))
        except ValueError:
            logger.warning(f"Unparseable exec status: {self._status_buffer!r}")
            return
        logger.info(f"Remote process finished: {self.exit_status.get('status', 'unknown')}")

    def _fail(self, error: BaseException) -> None:
        if self.closed.is_set():
            return
        logger.error(f"Exec connection failed: {error}")
        self.failure = error
        for reader in self._readers.values():
            reader.feed(TransportError(str(error)))
        self.closed.set()

    def _finish(self) -> None:
        if self.closed.is_set():
            return
        self._parse_status()
        for reader in self._readers.values():
            reader.feed_eof()
        self.closed.set()


@dataclass
class ChannelSet:
    """
    The streams of one live exec connection. Each one is optional; callers
    branch on presence.
    """

    stdin: Optional[ChannelWriter] = None
    stdout: Optional[ChannelReader] = None
    stderr: Optional[ChannelReader] = None
    closed: asyncio.Event = field(default_factory=asyncio.Event)
    transport: Optional[WebSocketTransport] = None

    @classmethod
    def from_websocket(cls, ws, params: AttachParams, poll_interval: float = 0.2) -> "ChannelSet":
        """Wrap an open exec websocket and start demultiplexing it."""
        transport = WebSocketTransport(ws, poll_interval=poll_interval)
        channels = cls(
            stdin=ChannelWriter(transport) if params.stdin else None,
            stdout=transport.reader(STDOUT_CHANNEL) if params.stdout else None,
            stderr=transport.reader(STDERR_CHANNEL) if params.stderr else None,
            closed=transport.closed,
            transport=transport,
        )
        transport.start()
        return channels

    @property
    def failed(self) -> bool:
        return self.transport is not None and self.transport.failure is not None

    async def aclose(self) -> None:
        if self.transport is not None:
            await self.transport.aclose()
        else:
            self.closed.set()
