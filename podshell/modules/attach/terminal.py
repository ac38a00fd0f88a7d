"""Local terminal endpoints for an attach session."""

import asyncio
import contextlib
import logging
import os
import queue
import sys
import termios
import threading
import tty
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4096


class ByteSource(Protocol):
    """Anything that yields bytes; b"" means end of stream."""

    async def read(self) -> bytes:
        ...


class ByteSink(Protocol):
    """Anything that accepts bytes."""

    async def write(self, data: bytes) -> None:
        ...


class FdReader:
    """
    Reads a file descriptor through the event loop.

    A pending read is just a parked future, so cancelling it never leaves a
    thread blocked on the terminal.
    """

    def __init__(self, fd: int, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._fd = fd
        self._chunk_size = chunk_size

    async def read(self) -> bytes:
        loop = asyncio.get_running_loop()
        readable = loop.create_future()

        def _on_readable():
            if not readable.done():
                readable.set_result(None)

        try:
            loop.add_reader(self._fd, _on_readable)
        except (PermissionError, ValueError, NotImplementedError):
            # Regular files can't be polled, and never block either.
            return os.read(self._fd, self._chunk_size)

        try:
            await readable
        finally:
            loop.remove_reader(self._fd)
        return os.read(self._fd, self._chunk_size)


class StreamWriter:
    """
    Writes to a binary stream and flushes every chunk so output shows up as it arrives.

    The blocking write runs on a daemon thread fed through a queue, so a local
    reader that stops draining (a paused pager, a full pipe) never stalls the
    event loop. ``write()`` waits for its chunk to be flushed, which is the
    backpressure the relay sees. Cancelling a pending ``write()`` returns at
    once; the chunk may still be written later.
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._pending: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    async def write(self, data: bytes) -> None:
        loop = asyncio.get_running_loop()
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._process_writes, name="local-writer", daemon=True
            )
            self._thread.start()
        done = loop.create_future()
        self._pending.put((data, loop, done))
        await done

    def _process_writes(self) -> None:
        while True:
            data, loop, done = self._pending.get()
            try:
                self._stream.write(data)
                self._stream.flush()
            except (OSError, ValueError) as e:
                self._resolve(loop, done, e)
            else:
                self._resolve(loop, done, None)

    @staticmethod
    def _resolve(loop, done, error: Optional[BaseException]) -> None:
        def _set():
            if done.done():
                return
            if error is None:
                done.set_result(None)
            else:
                done.set_exception(error)

        try:
            loop.call_soon_threadsafe(_set)
        except RuntimeError:
            logger.debug("Event loop closed before a local write finished")


@contextlib.contextmanager
def raw_terminal(fd: int, enabled: bool = True) -> Iterator[bool]:
    """
    Put a terminal in raw mode for the duration of the block.

    Yields:
        True if raw mode was applied, False if ``fd`` is not a terminal
    """
    if not enabled or not os.isatty(fd):
        yield False
        return

    saved = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        logger.debug("Local terminal switched to raw mode")
        yield True
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)
        logger.debug("Local terminal restored")


@dataclass
class LocalEndpoints:
    """The local side of a session: where input comes from and output goes."""

    stdin: Optional[ByteSource] = None
    stdout: Optional[ByteSink] = None
    stderr: Optional[ByteSink] = None
    tty_fd: Optional[int] = None

    @classmethod
    def from_process(cls) -> "LocalEndpoints":
        """Endpoints bound to this process's stdio."""
        stdin_fd = sys.stdin.fileno()
        return cls(
            stdin=FdReader(stdin_fd),
            stdout=StreamWriter(sys.stdout.buffer),
            stderr=StreamWriter(sys.stderr.buffer),
            tty_fd=stdin_fd,
        )

    def terminal_mode(self, tty_requested: bool):
        """Context manager applied around the attached phase."""
        if self.tty_fd is None:
            return contextlib.nullcontext(False)
        return raw_terminal(self.tty_fd, enabled=tty_requested)
