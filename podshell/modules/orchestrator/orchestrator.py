import asyncio
import logging
from dataclasses import replace
from typing import List, Optional

from ..api.errors import ClusterAPIError
from ..api.models import (
    AttachParams,
    CreateStatus,
    DeleteStatus,
    FailureKind,
    ReadinessKind,
    SessionReport,
    SessionResultKind,
    SessionState,
    WorkloadDescriptor,
)
from ..attach.session import AttachSession
from ..attach.terminal import LocalEndpoints
from ..readiness.watcher import await_ready

logger = logging.getLogger(__name__)


class SessionOrchestrator:
    """
    Runs one pod shell session end to end.

    Created -> AwaitingReady -> Attaching -> Attached -> Cleaning -> Done

    The pod is treated as a resource acquired at Created and released at
    Cleaning: whatever happens in between (failed create, readiness timeout,
    rejected attach, broken pipe, cancellation, an unexpected exception) the
    delete call is made exactly once before ``run()`` returns or raises.
    """

    def __init__(
        self,
        cluster,
        local: LocalEndpoints,
        exec_command: List[str],
        attach_params: Optional[AttachParams] = None,
        ready_timeout: float = 10,
        session_bound: Optional[float] = 15,
        tolerate_existing: bool = True,
        resource_version: str = "0",
        watch_timeout_seconds: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
        session: Optional[AttachSession] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            cluster: ClusterAPI implementation; sole path to the control plane
            local: Local stdio endpoints
            exec_command: Process to exec inside the pod
            attach_params: Streams to open (defaults: stdin, stdout, tty)
            ready_timeout: Seconds to wait for the pod to run
            session_bound: Hard upper bound on the attached phase in seconds
            tolerate_existing: Carry on if the pod already exists
            resource_version: Watch resume token
            watch_timeout_seconds: Server-side watch bound
            cancel: Set to end the session early
            session: AttachSession to relay with
        """
        self._cluster = cluster
        self._local = local
        self._exec_command = list(exec_command)
        self._attach_params = attach_params or AttachParams()
        self._ready_timeout = ready_timeout
        self._session_bound = session_bound
        self._tolerate_existing = tolerate_existing
        self._resource_version = resource_version
        self._watch_timeout_seconds = watch_timeout_seconds
        self._cancel = cancel or asyncio.Event()
        self._session = session or AttachSession()
        self._started = False
        self.state = SessionState.CREATED
        self.history: List[SessionState] = [SessionState.CREATED]

    async def run(self, descriptor: WorkloadDescriptor) -> SessionReport:
        """
        Create the pod, wait for it, attach, relay, delete.

        Returns:
            SessionReport describing the stage reached and the outcome

        Raises:
            RuntimeError: The orchestrator was already used
        """
        if self._started:
            raise RuntimeError("A SessionOrchestrator runs a single session")
        self._started = True

        report = None
        try:
            report = await self._drive(descriptor)
        finally:
            self._transition(SessionState.CLEANING)
            cleanup_error = await self._cleanup(descriptor)
            self._transition(SessionState.DONE)

        if cleanup_error:
            report = replace(report, cleanup_error=cleanup_error)
        logger.info(report.describe())
        return report

    async def _drive(self, descriptor: WorkloadDescriptor) -> SessionReport:
        # Created
        try:
            status = await self._cluster.create(descriptor)
        except ClusterAPIError as e:
            logger.error(f"Failed to create pod {descriptor.name}: {e}")
            return self._fail(FailureKind.CREATION_FAILURE, str(e))

        if status is CreateStatus.ALREADY_EXISTS:
            if not self._tolerate_existing:
                return self._fail(
                    FailureKind.CREATION_CONFLICT, f"pod {descriptor.name} already exists"
                )
            logger.warning(f"Pod {descriptor.name} already exists, reusing it")

        # AwaitingReady
        self._transition(SessionState.AWAITING_READY)
        events = self._cluster.watch(
            descriptor.name,
            descriptor.namespace,
            resource_version=self._resource_version,
            timeout_seconds=self._watch_timeout_seconds,
        )
        readiness = await self._until_cancelled(await_ready(events, self._ready_timeout))
        if readiness is None:
            return self._fail(FailureKind.INTERRUPTED, "cancelled while waiting for the pod")
        if readiness.kind is ReadinessKind.TIMED_OUT:
            return self._fail(FailureKind.READINESS_TIMEOUT, readiness.reason, readiness=readiness)
        if readiness.kind is ReadinessKind.FAILED:
            return self._fail(FailureKind.READINESS_FAILURE, readiness.reason, readiness=readiness)

        # Attaching
        self._transition(SessionState.ATTACHING)
        try:
            channels = await self._cluster.attach(
                descriptor.name, descriptor.namespace, self._exec_command, self._attach_params
            )
        except ClusterAPIError as e:
            logger.error(f"Failed to attach to pod {descriptor.name}: {e}")
            return self._fail(FailureKind.ATTACH_FAILURE, str(e), readiness=readiness)

        # Attached
        self._transition(SessionState.ATTACHED)
        try:
            with self._local.terminal_mode(self._attach_params.tty):
                result = await self._session.run(
                    channels, self._local, bound=self._session_bound, cancel=self._cancel
                )
        finally:
            await channels.aclose()

        failure = None
        if result.kind is SessionResultKind.PIPE_ERROR:
            failure = FailureKind.PIPE_FAILURE
        elif result.kind is SessionResultKind.INTERRUPTED:
            failure = FailureKind.INTERRUPTED
        return SessionReport(
            stage=self.state,
            failure=failure,
            detail=f"{result.direction.value}: {result.cause}" if result.direction else None,
            readiness=readiness,
            session_result=result,
        )

    async def _until_cancelled(self, coro):
        """Await ``coro`` unless the cancel event fires first, in which case return None."""
        task = asyncio.create_task(coro)
        cancel_waiter = asyncio.create_task(self._cancel.wait())
        try:
            await asyncio.wait({task, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_waiter.cancel()
            if not task.done():
                task.cancel()
            await asyncio.gather(task, cancel_waiter, return_exceptions=True)
        if task.cancelled():
            return None
        return task.result()

    async def _cleanup(self, descriptor: WorkloadDescriptor) -> Optional[str]:
        """Delete the pod. Best effort: failures are logged and reported, never raised."""
        try:
            status = await self._cluster.delete(descriptor.name, descriptor.namespace)
        except ClusterAPIError as e:
            logger.error(f"Cleanup of pod {descriptor.name} failed: {e}")
            return str(e)

        if status is DeleteStatus.NOT_FOUND:
            logger.warning(f"Pod {descriptor.name} was already gone at cleanup")
            return f"pod {descriptor.name} not found"
        return None

    def _fail(self, failure: FailureKind, detail: Optional[str], readiness=None) -> SessionReport:
        return SessionReport(stage=self.state, failure=failure, detail=detail, readiness=readiness)

    def _transition(self, state: SessionState) -> None:
        logger.debug(f"Session state: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
