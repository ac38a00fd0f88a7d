"""
Shared pytest fixtures for podshell tests.

This module provides common fixtures including:
- FakeClusterAPI: Records control-plane calls and replays canned watch events
- FakeWebSocket: Scripted stand-in for the exec websocket client
- In-memory local stdio endpoints
"""

import asyncio
import os
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from podshell.modules.api.models import AttachParams, CreateStatus, DeleteStatus
from podshell.modules.attach.channels import ChannelReader, ChannelSet
from podshell.modules.attach.terminal import LocalEndpoints
from podshell.modules.watch.stream import LifecycleStream


# =============================================================================
# Local Stdio Fakes
# =============================================================================

class QueueSource:
    """Local input fed by the test. ``feed_eof()`` ends the stream."""

    def __init__(self, chunks=(), eof: bool = False):
        self._queue: asyncio.Queue = asyncio.Queue()
        for chunk in chunks:
            self._queue.put_nowait(chunk)
        if eof:
            self._queue.put_nowait(b"")
        self.reads = 0

    def feed(self, data: bytes) -> None:
        self._queue.put_nowait(data)

    def feed_eof(self) -> None:
        self._queue.put_nowait(b"")

    async def read(self) -> bytes:
        data = await self._queue.get()
        self.reads += 1
        return data


class BufferSink:
    """Collects everything written to it."""

    def __init__(self):
        self.chunks: List[bytes] = []

    async def write(self, data: bytes) -> None:
        self.chunks.append(data)

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)


class RecordingWriter:
    """Stands in for the remote stdin channel."""

    def __init__(self, fail_with: Optional[BaseException] = None):
        self.chunks: List[bytes] = []
        self.closed = False
        self.fail_with = fail_with

    async def write(self, data: bytes) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.chunks.append(data)

    async def close(self) -> None:
        self.closed = True

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)


def make_channels(stdin: bool = True, stdout: bool = True, stderr: bool = False) -> ChannelSet:
    """ChannelSet with a recording stdin writer and test-fed readers."""
    return ChannelSet(
        stdin=RecordingWriter() if stdin else None,
        stdout=ChannelReader(1) if stdout else None,
        stderr=ChannelReader(2) if stderr else None,
    )


def make_local(chunks=(), eof: bool = False, stderr: bool = False) -> LocalEndpoints:
    return LocalEndpoints(
        stdin=QueueSource(chunks, eof=eof),
        stdout=BufferSink(),
        stderr=BufferSink() if stderr else None,
    )


# =============================================================================
# Exec Websocket Fake
# =============================================================================

class FakeWebSocket:
    """
    Scripted replacement for kubernetes.stream.ws_client.WSClient (binary mode).

    Frames are (channel, payload) tuples delivered one per ``update()``. A
    payload that is an exception is raised from ``update()`` instead,
    simulating a broken connection. When the script runs out the socket
    closes, unless ``hold_open`` is set.
    """

    def __init__(self, frames=(), hold_open: bool = False):
        self._frames = deque(frames)
        self._channels: Dict[int, bytes] = {}
        self._open = True
        self._lock = threading.Lock()
        self.hold_open = hold_open
        self.written: List[tuple] = []
        self.write_error: Optional[BaseException] = None
        self.close_calls = 0

    @property
    def pending_frames(self) -> int:
        with self._lock:
            return len(self._frames)

    def push(self, channel: int, data) -> None:
        with self._lock:
            self._frames.append((channel, data))

    def finish(self) -> None:
        self.hold_open = False

    def is_open(self) -> bool:
        return self._open

    def update(self, timeout=0) -> None:
        if not self._open:
            return
        with self._lock:
            frame = self._frames.popleft() if self._frames else None
        if frame is None:
            if not self.hold_open:
                self._open = False
                return
            time.sleep(min(timeout, 0.01))
            return
        channel, data = frame
        if isinstance(data, BaseException):
            raise data
        self._channels[channel] = self._channels.get(channel, b"") + data

    def peek_channel(self, channel, timeout=0):
        return self._channels.get(channel, b"")

    def read_channel(self, channel, timeout=0):
        return self._channels.pop(channel, b"")

    def write_channel(self, channel, data) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.written.append((channel, data))

    def close(self, **kwargs) -> None:
        self._open = False
        self.close_calls += 1


# =============================================================================
# Control Plane Fake
# =============================================================================

@dataclass
class ClusterCall:
    """Record of one control-plane call made during a test."""
    operation: str
    args: Dict[str, Any] = field(default_factory=dict)


class FakeClusterAPI:
    """
    Records every ClusterAPI call and answers with configured results.

    Results may be exceptions, which are raised instead of returned. The
    watch replays ``events`` (raw watch notifications) and then, if
    ``hold_watch_open`` is set, blocks like an idle watch until stopped.

    Usage:
        def test_pod_comes_up(fake_cluster):
            fake_cluster.register_scenario("pending_then_running")
            # ... run the orchestrator
            assert fake_cluster.call_count("delete") == 1
    """

    def __init__(self):
        self.calls: List[ClusterCall] = []
        self.create_result: Any = CreateStatus.CREATED
        self.delete_result: Any = DeleteStatus.DELETED
        self.attach_result: Any = None
        self.events: List[Dict[str, Any]] = []
        self.hold_watch_open = True
        self.watch_stopped = threading.Event()
        self.streams: List[LifecycleStream] = []

    def register_scenario(self, scenario_name: str) -> "FakeClusterAPI":
        from fixtures.pod_events import get_scenario

        self.events = list(get_scenario(scenario_name))
        return self

    async def create(self, descriptor):
        self.calls.append(ClusterCall("create", {"descriptor": descriptor}))
        return self._answer(self.create_result)

    def watch(self, name, namespace, resource_version="0", timeout_seconds=None):
        self.calls.append(
            ClusterCall(
                "watch",
                {
                    "name": name,
                    "namespace": namespace,
                    "resource_version": resource_version,
                    "timeout_seconds": timeout_seconds,
                },
            )
        )
        events = list(self.events)
        hold_open = self.hold_watch_open
        stopped = self.watch_stopped

        def source():
            for raw in events:
                yield raw
            if hold_open:
                stopped.wait(5)

        stream = LifecycleStream(source, name=name, stop=stopped.set)
        self.streams.append(stream)
        return stream

    async def attach(self, name, namespace, command, params: AttachParams):
        self.calls.append(
            ClusterCall(
                "attach",
                {"name": name, "namespace": namespace, "command": command, "params": params},
            )
        )
        result = self._answer(self.attach_result)
        return result if result is not None else make_channels()

    async def delete(self, name, namespace):
        self.calls.append(ClusterCall("delete", {"name": name, "namespace": namespace}))
        return self._answer(self.delete_result)

    def call_count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call.operation == operation)

    def calls_for(self, operation: str) -> List[ClusterCall]:
        return [call for call in self.calls if call.operation == operation]

    @property
    def operations(self) -> List[str]:
        return [call.operation for call in self.calls]

    @staticmethod
    def _answer(result):
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def fake_cluster():
    """A FakeClusterAPI; the watch is released at teardown."""
    cluster = FakeClusterAPI()
    yield cluster
    cluster.watch_stopped.set()


# =============================================================================
# Test Markers Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: Integration tests requiring infrastructure"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests requiring a real cluster"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take a long time to run"
    )
