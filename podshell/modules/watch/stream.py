import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Iterable, Optional

from ..api.models import EventKind, LifecycleEvent, WorkloadSnapshot, WorkloadStatus

logger = logging.getLogger(__name__)

_END = object()

_KINDS = {kind.value: kind for kind in EventKind}


def translate_event(raw: Dict[str, Any], name: Optional[str] = None) -> Optional[LifecycleEvent]:
    """
    Convert one raw watch notification into a LifecycleEvent.

    Args:
        raw: Watch event dict with "type" and "raw_object" (or "object")
        name: If given, notifications for any other pod are dropped

    Returns:
        LifecycleEvent, or None for notifications that carry no lifecycle
        information (bookmarks, other pods)
    """
    kind = _KINDS.get(raw.get("type"))
    if kind is None:
        logger.debug(f"Ignoring watch notification of type {raw.get('type')!r}")
        return None

    obj = raw.get("raw_object")
    if obj is None:
        obj = raw.get("object")
    if obj is not None and not isinstance(obj, dict):
        # Deserialized client model
        obj = obj.to_dict()
    obj = obj or {}

    if kind is EventKind.ERROR:
        message = obj.get("message") or obj.get("reason") or "unknown watch error"
        code = obj.get("code")
        return LifecycleEvent.failure(f"{code}: {message}" if code else message)

    metadata = obj.get("metadata") or {}
    pod_name = metadata.get("name", "")
    if name is not None and pod_name != name:
        logger.debug(f"Ignoring notification for unrelated pod {pod_name!r}")
        return None

    status = obj.get("status")
    snapshot = WorkloadSnapshot(
        name=pod_name,
        status=None
        if status is None
        else WorkloadStatus(
            phase=status.get("phase"),
            reason=status.get("reason"),
            message=status.get("message"),
        ),
    )
    return LifecycleEvent(kind=kind, snapshot=snapshot)


class LifecycleStream:
    """
    Lazy, cancellable async sequence of LifecycleEvent for one pod.

    The blocking watch iterator is consumed on a daemon thread and handed to
    the event loop through an asyncio queue, so the loop never blocks on the
    API server. Events are delivered in the order the server sent them.

    A failure of the underlying watch is delivered as a single ERROR event,
    after which the sequence ends.
    """

    def __init__(
        self,
        source: Callable[[], Iterable[Dict[str, Any]]],
        name: Optional[str] = None,
        stop: Optional[Callable[[], None]] = None,
    ):
        """
        Args:
            source: Opens the raw watch and returns its iterator
            name: Pod name the notifications are filtered on
            stop: Asks the raw watch to stop; called on close
        """
        self._source = source
        self._name = name
        self._stop = stop
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        self._finished = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> LifecycleEvent:
        if self._closed or self._finished:
            raise StopAsyncIteration
        if self._thread is None:
            self._start()

        item = await self._queue.get()
        if item is _END:
            self._finished = True
            raise StopAsyncIteration
        return item

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        """Stop consuming and release the watch. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if self._stop is not None:
            self._stop()
        if self._queue is not None:
            # Wake a consumer still parked on the queue
            self._queue.put_nowait(_END)
        logger.debug(f"Lifecycle stream for {self._name} closed")

    def _start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._thread = threading.Thread(
            target=self._produce, name=f"watch-{self._name}", daemon=True
        )
        self._thread.start()

    def _produce(self) -> None:
        try:
            for raw in self._source():
                if self._closed:
                    break
                event = translate_event(raw, self._name)
                if event is None:
                    continue
                self._put(event)
                if event.kind is EventKind.ERROR:
                    break
        except Exception as e:
            if self._closed:
                # Expected when aclose() interrupted a blocked read
                logger.debug(f"Watch for {self._name} ended after close: {e}")
            else:
                logger.warning(f"Watch for {self._name} failed: {e}")
                self._put(LifecycleEvent.failure(str(e)))
        finally:
            self._put(_END)

    def _put(self, item) -> None:
        if self._closed:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Event loop already shut down; nobody is listening.
            self._closed = True
