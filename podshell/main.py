"""
podshell - command line entry point.

Creates a pod, waits for it to run, attaches this terminal to a shell in it
and deletes the pod afterwards. Settings come from the environment (and a
.env file); options override them.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

import click
from dotenv import load_dotenv
from pydantic import ValidationError

from podshell.config.provider import EnvConfigProvider
from podshell.logging_config import configure_logging
from podshell.modules.api.errors import ClusterAPIError
from podshell.modules.api.models import AttachParams, SessionReport, WorkloadDescriptor
from podshell.modules.attach.terminal import LocalEndpoints
from podshell.modules.cluster import KubernetesClusterAPI
from podshell.modules.orchestrator import SessionOrchestrator

logger = logging.getLogger("podshell")


async def run_session(
    orchestrator: SessionOrchestrator, descriptor: WorkloadDescriptor, cancel: asyncio.Event
) -> SessionReport:
    """Run the orchestrator with SIGINT/SIGTERM mapped to the cancel event."""
    loop = asyncio.get_running_loop()
    installed = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, cancel.set)
            installed.append(signum)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Cannot install handler for signal {signum}")
    try:
        return await orchestrator.run(descriptor)
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)


@click.command()
@click.option("--namespace", "namespace", default=None, help="Target namespace (env: NAMESPACE)")
@click.option("--name", "name", default=None, help="Pod name (env: PODSHELL_POD_NAME)")
@click.option("--image", "image", default=None, help="Container image (env: PODSHELL_IMAGE)")
@click.option("--ready-timeout", "ready_timeout", type=click.FloatRange(min=0, min_open=True), default=None, help="Seconds to wait for the pod to run")
@click.option("--session-seconds", "session_seconds", type=click.FloatRange(min=0, min_open=True), default=None, help="Upper bound on the attached session")
@click.option("--tty/--no-tty", "tty", default=None, help="Allocate a TTY for the remote shell")
@click.option("--tolerate-existing/--no-tolerate-existing", "tolerate_existing", default=None)
@click.option("--log-level", "log_level", default=None, help="DEBUG, INFO, WARNING or ERROR")
def main(
    namespace: Optional[str],
    name: Optional[str],
    image: Optional[str],
    ready_timeout: Optional[float],
    session_seconds: Optional[float],
    tty: Optional[bool],
    tolerate_existing: Optional[bool],
    log_level: Optional[str],
):
    load_dotenv()

    provider = EnvConfigProvider()
    try:
        cluster_config = provider.get_cluster_config()
        workload_config = provider.get_workload_config()
        attach_config = provider.get_attach_config()
        session_config = provider.get_session_config()
    except ValueError as e:
        raise click.BadParameter(str(e))

    configure_logging(log_level or session_config.log_level)

    if namespace:
        cluster_config.namespace = namespace
    if name:
        workload_config.name = name
    if image:
        workload_config.image = image
    if ready_timeout is not None:
        session_config.ready_timeout = ready_timeout
    if session_seconds is not None:
        session_config.session_seconds = session_seconds
    if tty is not None:
        attach_config.tty = tty
    if tolerate_existing is not None:
        session_config.tolerate_existing = tolerate_existing

    try:
        descriptor = WorkloadDescriptor(
            name=workload_config.name,
            image=workload_config.image,
            command=workload_config.command,
            namespace=cluster_config.namespace,
        )
        attach_params = AttachParams(
            stdin=attach_config.stdin,
            stdout=attach_config.stdout,
            stderr=attach_config.stderr,
            tty=attach_config.tty,
        )
    except ValidationError as e:
        raise click.BadParameter(str(e))

    try:
        cluster = KubernetesClusterAPI.from_config(
            cluster_config, poll_interval=session_config.poll_interval
        )
    except ClusterAPIError as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    async def _main() -> SessionReport:
        cancel = asyncio.Event()
        orchestrator = SessionOrchestrator(
            cluster,
            LocalEndpoints.from_process(),
            exec_command=attach_config.command,
            attach_params=attach_params,
            ready_timeout=session_config.ready_timeout,
            session_bound=session_config.session_seconds,
            tolerate_existing=session_config.tolerate_existing,
            resource_version=session_config.resource_version,
            watch_timeout_seconds=session_config.watch_timeout_seconds,
            cancel=cancel,
        )
        return await run_session(orchestrator, descriptor, cancel)

    report = asyncio.run(_main())
    click.echo(report.describe(), err=True)
    sys.exit(report.exit_code)


if __name__ == "__main__":
    main()
