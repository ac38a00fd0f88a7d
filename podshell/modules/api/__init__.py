"""
API Module - Black Box Interface

Purpose: Shared data models and boundary errors
Interface: descriptors, lifecycle events, outcomes, reports, error types
Hidden: Field validation and manifest rendering

Every other module speaks in these types and nothing else.
"""

from .errors import (
    AttachError,
    ChannelClosedError,
    ChannelError,
    ClusterAPIError,
    TransportError,
)
from .models import (
    AttachParams,
    CreateStatus,
    DeleteStatus,
    Direction,
    EventKind,
    FailureKind,
    LifecycleEvent,
    ReadinessKind,
    ReadinessOutcome,
    SessionReport,
    SessionResult,
    SessionResultKind,
    SessionState,
    WorkloadDescriptor,
    WorkloadSnapshot,
    WorkloadStatus,
)

__all__ = [
    "AttachError",
    "AttachParams",
    "ChannelClosedError",
    "ChannelError",
    "ClusterAPIError",
    "CreateStatus",
    "DeleteStatus",
    "Direction",
    "EventKind",
    "FailureKind",
    "LifecycleEvent",
    "ReadinessKind",
    "ReadinessOutcome",
    "SessionReport",
    "SessionResult",
    "SessionResultKind",
    "SessionState",
    "TransportError",
    "WorkloadDescriptor",
    "WorkloadSnapshot",
    "WorkloadStatus",
]
