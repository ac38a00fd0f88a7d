"""Errors raised at the cluster and channel boundaries.

The orchestrator turns every one of these into a ``SessionReport``; none of
them escape a session.
"""

from typing import Optional


class ClusterAPIError(Exception):
    """A control-plane call failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class AttachError(ClusterAPIError):
    """The exec connection to the pod could not be opened."""


class ChannelError(Exception):
    """A single channel of an exec connection failed."""


class ChannelClosedError(ChannelError):
    """The remote side stopped accepting input on a channel."""


class TransportError(Exception):
    """The shared exec connection failed; every channel on it is gone."""
