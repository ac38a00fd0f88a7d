import asyncio
import functools
import logging
import threading
from typing import List, Optional, Protocol

import urllib3
from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream as k8s_stream
from websocket import WebSocketException

from ...config.provider import ClusterConfig
from ..api.errors import AttachError, ClusterAPIError
from ..api.models import AttachParams, CreateStatus, DeleteStatus, WorkloadDescriptor
from ..attach.channels import ChannelSet
from ..watch.stream import LifecycleStream

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (urllib3.exceptions.HTTPError, OSError)


def _release_response(response, name: str) -> None:
    """
    Interrupt a watch response that may be blocked in a read on another thread.

    Watch.stop() only takes effect at the next event, so an idle watch would
    otherwise hold its connection until the server-side timeout.
    """
    try:
        response.shutdown()
        response.release_conn()
    except (OSError, ValueError) as e:
        logger.debug(f"Error releasing watch connection for {name}: {e}")


class ClusterAPI(Protocol):
    """Protocol for the cluster control plane - allows swappable implementations."""

    async def create(self, descriptor: WorkloadDescriptor) -> CreateStatus:
        """
        Create the pod.

        Returns:
            CREATED, or ALREADY_EXISTS if a pod with that name exists

        Raises:
            ClusterAPIError: Any other failure
        """
        ...

    def watch(
        self,
        name: str,
        namespace: str,
        resource_version: str = "0",
        timeout_seconds: Optional[int] = None,
    ) -> LifecycleStream:
        """Lifecycle notifications for one pod, filtered on metadata.name."""
        ...

    async def attach(
        self, name: str, namespace: str, command: List[str], params: AttachParams
    ) -> ChannelSet:
        """
        Open an exec connection to the pod.

        Raises:
            AttachError: The connection was rejected
        """
        ...

    async def delete(self, name: str, namespace: str) -> DeleteStatus:
        """
        Delete the pod.

        Returns:
            DELETED, or NOT_FOUND if it was already gone

        Raises:
            ClusterAPIError: Any other failure
        """
        ...


class KubernetesClusterAPI:
    """ClusterAPI backed by the official Kubernetes Python client."""

    def __init__(self, core_api, stream_core_api=None, poll_interval: float = 0.2):
        """
        Args:
            core_api: CoreV1Api used for REST calls
            stream_core_api: CoreV1Api used only for exec websockets
            poll_interval: Socket poll interval of the exec channel pump
        """
        self._core_api = core_api
        self._stream_core_api = stream_core_api or core_api
        self._poll_interval = poll_interval

    @classmethod
    def from_config(cls, cluster_config: ClusterConfig, poll_interval: float = 0.2):
        """Load cluster credentials (in-cluster first, then kubeconfig) and build the client."""
        try:
            if cluster_config.kubeconfig or cluster_config.context:
                config.load_kube_config(
                    config_file=cluster_config.kubeconfig, context=cluster_config.context
                )
                logger.info("Loaded kubeconfig from explicit settings")
            else:
                try:
                    config.load_incluster_config()
                    logger.info("Loaded in-cluster Kubernetes configuration")
                except config.ConfigException:
                    config.load_kube_config()
                    logger.info("Loaded kubeconfig from default location")
        except config.ConfigException as e:
            raise ClusterAPIError(f"Failed to load Kubernetes configuration: {e}") from e

        # kubernetes.stream.stream patches the request method of the ApiClient
        # it is given; exec gets its own so REST calls never go over websocket.
        core_api = client.CoreV1Api(api_client=client.ApiClient())
        stream_core_api = client.CoreV1Api(api_client=client.ApiClient())
        return cls(core_api, stream_core_api, poll_interval=poll_interval)

    async def create(self, descriptor: WorkloadDescriptor) -> CreateStatus:
        try:
            await asyncio.to_thread(
                self._core_api.create_namespaced_pod,
                namespace=descriptor.namespace,
                body=descriptor.to_manifest(),
            )
        except ApiException as e:
            if e.status == 409:
                logger.warning(f"Pod {descriptor.name} already exists")
                return CreateStatus.ALREADY_EXISTS
            raise ClusterAPIError(
                f"Failed to create pod {descriptor.name}: {e.reason}", status=e.status
            ) from e
        except _TRANSPORT_ERRORS as e:
            raise ClusterAPIError(f"Failed to create pod {descriptor.name}: {e}") from e

        logger.info(f"Created pod {descriptor.namespace}/{descriptor.name}")
        return CreateStatus.CREATED

    def watch(
        self,
        name: str,
        namespace: str,
        resource_version: str = "0",
        timeout_seconds: Optional[int] = None,
    ) -> LifecycleStream:
        w = watch.Watch()
        responses = []
        stopped = threading.Event()
        kwargs = {
            "namespace": namespace,
            "field_selector": f"metadata.name={name}",
            "resource_version": resource_version,
        }
        if timeout_seconds is not None:
            kwargs["timeout_seconds"] = timeout_seconds

        # Watch.stream reads the return type and watch argument from the docstring
        @functools.wraps(self._core_api.list_namespaced_pod)
        def list_pods(*args, **call_kwargs):
            response = self._core_api.list_namespaced_pod(*args, **call_kwargs)
            responses.append(response)
            if stopped.is_set():
                _release_response(response, name)
            return response

        def source():
            return w.stream(list_pods, **kwargs)

        def stop():
            stopped.set()
            w.stop()
            for response in list(responses):
                _release_response(response, name)

        return LifecycleStream(source, name=name, stop=stop)

    async def attach(
        self, name: str, namespace: str, command: List[str], params: AttachParams
    ) -> ChannelSet:
        try:
            ws_client = await asyncio.to_thread(
                k8s_stream,
                self._stream_core_api.connect_get_namespaced_pod_exec,
                name,
                namespace,
                command=list(command),
                container=params.container,
                stdin=params.stdin,
                stdout=params.stdout,
                stderr=params.stderr,
                tty=params.tty,
                _preload_content=False,  # Return WSClient instead of string
                binary=True,
            )
        except ApiException as e:
            raise AttachError(f"Failed to attach to pod {name}: {e.reason}", status=e.status) from e
        except (WebSocketException, *_TRANSPORT_ERRORS) as e:
            raise AttachError(f"Failed to attach to pod {name}: {e}") from e

        logger.info(f"Attached to {namespace}/{name}: {' '.join(command)}")
        return ChannelSet.from_websocket(ws_client, params, poll_interval=self._poll_interval)

    async def delete(self, name: str, namespace: str) -> DeleteStatus:
        try:
            await asyncio.to_thread(
                self._core_api.delete_namespaced_pod, name=name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return DeleteStatus.NOT_FOUND
            raise ClusterAPIError(f"Failed to delete pod {name}: {e.reason}", status=e.status) from e
        except _TRANSPORT_ERRORS as e:
            raise ClusterAPIError(f"Failed to delete pod {name}: {e}") from e

        logger.info(f"Deleted pod {namespace}/{name}")
        return DeleteStatus.DELETED
