import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from ..api.errors import ChannelClosedError, TransportError
from ..api.models import Direction, SessionResult
from .channels import ChannelSet
from .terminal import ByteSink, ByteSource, LocalEndpoints

logger = logging.getLogger(__name__)

_OUTPUT_DIRECTIONS = (Direction.STDOUT, Direction.STDERR)


class AttachSession:
    """
    Relays bytes between local stdio and a remote channel set.

    Each direction is its own task:
    - local stdin -> remote stdin (if the stdin channel is open)
    - remote stdout -> local stdout (if the stdout channel is open)
    - remote stderr -> local stderr (if the stderr channel is open)

    Directions share no state. Local input reaching end of stream does not
    end the other directions; output may still be arriving. The session ends
    when every direction has stopped, and the result is reported only after
    all of them have been joined.

    What stops a direction early:
    - the session bound elapsing (hard limit, never extended)
    - the cancel event being set
    - a TransportError on any direction, since all channels ride the same
      connection
    - the connection closing normally once the output directions drained;
      remote stdin can no longer receive anything
    """

    def __init__(self):
        self._relayed: Dict[Direction, int] = {}

    async def run(
        self,
        channels: ChannelSet,
        local: LocalEndpoints,
        bound: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> SessionResult:
        """
        Run the relay until it ends.

        Args:
            channels: Open channel set, owned by this call while it runs
            local: Local stdio endpoints
            bound: Upper bound on the session in seconds (None for no bound)
            cancel: Set to end the session early as Interrupted

        Returns:
            SessionResult
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + bound if bound is not None else None
        self._relayed = {}
        failures: List[Tuple[Direction, BaseException]] = []
        interrupted = False

        tasks: Dict[Direction, asyncio.Task] = {}
        if channels.stdin is not None and local.stdin is not None:
            tasks[Direction.STDIN] = asyncio.create_task(
                self._pump_input(local.stdin, channels.stdin), name="relay-stdin"
            )
        if channels.stdout is not None and local.stdout is not None:
            tasks[Direction.STDOUT] = asyncio.create_task(
                self._pump_output(Direction.STDOUT, channels.stdout, local.stdout),
                name="relay-stdout",
            )
        if channels.stderr is not None and local.stderr is not None:
            tasks[Direction.STDERR] = asyncio.create_task(
                self._pump_output(Direction.STDERR, channels.stderr, local.stderr),
                name="relay-stderr",
            )

        cancel_waiter = asyncio.create_task(cancel.wait()) if cancel is not None else None
        closed_waiter = asyncio.create_task(channels.closed.wait())
        collected = set()

        try:
            while True:
                self._collect(tasks, collected, failures)
                pending = {task for task in tasks.values() if not task.done()}
                if not pending:
                    break

                if any(isinstance(error, TransportError) for _, error in failures):
                    logger.warning("Exec connection lost, stopping every direction")
                    self._stop(pending)
                    break

                outputs_done = all(
                    tasks[d].done() for d in _OUTPUT_DIRECTIONS if d in tasks
                )
                if closed_waiter.done() and outputs_done:
                    logger.debug("Connection closed and output drained, stopping input")
                    self._stop(pending)
                    break

                timeout = None
                if deadline is not None:
                    timeout = deadline - loop.time()
                    if timeout <= 0:
                        logger.info(f"Session bound of {bound}s elapsed")
                        self._stop(pending)
                        break

                waiters = set(pending)
                if cancel_waiter is not None:
                    waiters.add(cancel_waiter)
                if not closed_waiter.done():
                    waiters.add(closed_waiter)
                await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

                if cancel_waiter is not None and cancel_waiter.done():
                    logger.info("Session cancelled")
                    interrupted = True
                    self._stop({task for task in tasks.values() if not task.done()})
                    break

            # Join: nothing is reported while a direction is still running
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            self._collect(tasks, collected, failures)
        finally:
            for waiter in (cancel_waiter, closed_waiter):
                if waiter is not None and not waiter.done():
                    waiter.cancel()
            for task in tasks.values():
                if not task.done():
                    task.cancel()
            await asyncio.gather(
                *(w for w in (cancel_waiter, closed_waiter) if w is not None),
                *tasks.values(),
                return_exceptions=True,
            )

        relayed = dict(self._relayed)
        if failures:
            direction, error = failures[0]
            logger.error(f"Relay failed on {direction.value}: {error}")
            return SessionResult.pipe_error(direction, str(error) or type(error).__name__, relayed)
        if interrupted:
            return SessionResult.interrupted(relayed)
        return SessionResult.completed(relayed)

    async def _pump_input(self, source: ByteSource, sink) -> None:
        """Copy local input to the remote stdin channel until local EOF."""
        count = 0
        try:
            while True:
                data = await source.read()
                if not data:
                    logger.debug("Local input closed")
                    break
                await sink.write(data)
                count += len(data)
                self._relayed[Direction.STDIN] = count
        except ChannelClosedError:
            logger.debug("Remote stdin closed")
            return
        await sink.close()

    async def _pump_output(self, direction: Direction, source, sink: ByteSink) -> None:
        """Copy a remote output channel to a local sink until remote EOF."""
        count = 0
        while True:
            data = await source.read()
            if not data:
                logger.debug(f"Remote {direction.value} closed")
                return
            await sink.write(data)
            count += len(data)
            self._relayed[direction] = count

    @staticmethod
    def _stop(tasks) -> None:
        for task in tasks:
            task.cancel()

    @staticmethod
    def _collect(tasks, collected, failures) -> None:
        for direction, task in tasks.items():
            if direction in collected or not task.done():
                continue
            collected.add(direction)
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                failures.append((direction, error))
