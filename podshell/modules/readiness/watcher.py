import asyncio
import logging
from typing import AsyncIterator, Optional

from ..api.models import RUNNING_PHASE, EventKind, LifecycleEvent, ReadinessOutcome

logger = logging.getLogger(__name__)


def evaluate_event(event: LifecycleEvent) -> Optional[ReadinessOutcome]:
    """
    Apply the readiness rules to one notification.

    Returns:
        A terminal ReadinessOutcome, or None to keep waiting
    """
    snapshot = event.snapshot
    name = snapshot.name if snapshot else "<unknown>"

    if event.kind is EventKind.ADDED:
        logger.info(f"Added {name}")
        return None

    if event.kind is EventKind.MODIFIED:
        if snapshot is None or snapshot.status is None:
            return ReadinessOutcome.failed("missing status")
        phase = snapshot.status.phase
        if phase == RUNNING_PHASE:
            logger.info(f"Ready to attach to {name}")
            return ReadinessOutcome.ready()
        logger.debug(f"Pod {name} phase: {phase}, waiting...")
        return None

    if event.kind is EventKind.DELETED:
        return ReadinessOutcome.failed(f"pod {name} was deleted")

    return ReadinessOutcome.failed(event.error or "watch error")


async def await_ready(events: AsyncIterator[LifecycleEvent], timeout: float) -> ReadinessOutcome:
    """
    Wait until the pod is running, otherwise attaching returns a 500.

    Args:
        events: Lifecycle notifications for the pod, in delivery order
        timeout: Seconds to wait before giving up

    Returns:
        ReadinessOutcome. The stream is closed on every path, without
        draining what is left of it.

    An event that arrives after the deadline does not count, even if it
    would have made the pod ready.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    iterator = events.__aiter__()

    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return ReadinessOutcome.timed_out()
            try:
                event = await asyncio.wait_for(iterator.__anext__(), remaining)
            except StopAsyncIteration:
                # Server-side watch bound elapsed with nothing decisive.
                logger.info("Lifecycle stream ended before the pod was running")
                return ReadinessOutcome.timed_out()
            except asyncio.TimeoutError:
                return ReadinessOutcome.timed_out()

            if loop.time() >= deadline:
                return ReadinessOutcome.timed_out()

            outcome = evaluate_event(event)
            if outcome is not None:
                return outcome
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()
