"""
Cluster Module - Black Box Interface

Purpose: Talk to the Kubernetes control plane on behalf of a session
Interface: ClusterAPI (create(), watch(), attach(), delete())
Hidden: Credential discovery, HTTP status mapping, exec websocket setup

Replaceable with any control plane that can create, watch, exec into and delete a pod.
"""

from .kubernetes_api import ClusterAPI, KubernetesClusterAPI

__all__ = ["ClusterAPI", "KubernetesClusterAPI"]
