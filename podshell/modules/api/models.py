"""
podshell shared data models.

These models define the structure of all data passed between
components of a pod shell session.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DNS_LABEL_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")

RUNNING_PHASE = "Running"

# Enums


class EventKind(str, Enum):
    """Type of a pod lifecycle notification."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    ERROR = "ERROR"


class ReadinessKind(str, Enum):
    """Terminal state of the readiness wait."""

    READY = "ready"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class Direction(str, Enum):
    """One relay direction of an attach session."""

    STDIN = "stdin"
    STDOUT = "stdout"
    STDERR = "stderr"


class SessionResultKind(str, Enum):
    """How an attach session ended."""

    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    PIPE_ERROR = "pipe_error"


class CreateStatus(str, Enum):
    """Result of a workload create call."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class DeleteStatus(str, Enum):
    """Result of a workload delete call."""

    DELETED = "deleted"
    NOT_FOUND = "not_found"


class SessionState(str, Enum):
    """Orchestrator lifecycle states."""

    CREATED = "created"
    AWAITING_READY = "awaiting_ready"
    ATTACHING = "attaching"
    ATTACHED = "attached"
    CLEANING = "cleaning"
    DONE = "done"


class FailureKind(str, Enum):
    """Classification of what went wrong in a session."""

    CREATION_CONFLICT = "creation_conflict"
    CREATION_FAILURE = "creation_failure"
    READINESS_TIMEOUT = "readiness_timeout"
    READINESS_FAILURE = "readiness_failure"
    ATTACH_FAILURE = "attach_failure"
    PIPE_FAILURE = "pipe_failure"
    CLEANUP_FAILURE = "cleanup_failure"
    INTERRUPTED = "interrupted"


# Request Models


class WorkloadDescriptor(BaseModel):
    """Immutable definition of the pod to create."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Pod name, unique within the namespace", max_length=63)
    image: str = Field(..., description="Container image", min_length=1)
    command: List[str] = Field(..., description="Container entrypoint", min_length=1)
    namespace: str = Field(default="default", description="Kubernetes namespace")
    container: Optional[str] = Field(None, description="Container name, defaults to the pod name")

    @field_validator("name", "namespace")
    @classmethod
    def validate_dns_label(cls, v):
        """Pod names and namespaces must be RFC 1123 labels."""
        if not DNS_LABEL_PATTERN.match(v):
            raise ValueError(f"Invalid DNS-1123 label: {v!r}")
        return v

    @property
    def container_name(self) -> str:
        return self.container or self.name

    def to_manifest(self) -> Dict[str, Any]:
        """Render the Pod manifest submitted to the API server."""
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {"name": self.name, "namespace": self.namespace},
            "spec": {
                "containers": [
                    {
                        "name": self.container_name,
                        "image": self.image,
                        "command": list(self.command),
                    }
                ],
            },
        }


class AttachParams(BaseModel):
    """Which streams to open on the exec connection."""

    model_config = ConfigDict(frozen=True)

    stdin: bool = True
    stdout: bool = True
    stderr: bool = False
    tty: bool = True
    container: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def merge_stderr_into_tty(cls, data):
        # A TTY multiplexes stderr onto stdout; the server rejects both.
        if isinstance(data, dict) and data.get("tty", True) and data.get("stderr"):
            data = {**data, "stderr": False}
        return data

    @model_validator(mode="after")
    def require_a_stream(self):
        if not (self.stdin or self.stdout or self.stderr):
            raise ValueError("At least one of stdin, stdout or stderr must be requested")
        return self


# Lifecycle Notifications


@dataclass(frozen=True)
class WorkloadStatus:
    """The status block of a pod snapshot."""

    phase: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class WorkloadSnapshot:
    """A pod as seen in one notification. ``status`` is None when absent."""

    name: str
    status: Optional[WorkloadStatus] = None

    @property
    def phase(self) -> Optional[str]:
        return self.status.phase if self.status else None


@dataclass(frozen=True)
class LifecycleEvent:
    """A single watch notification for the workload."""

    kind: EventKind
    snapshot: Optional[WorkloadSnapshot] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, message: str) -> "LifecycleEvent":
        return cls(kind=EventKind.ERROR, error=message)


# Outcomes


@dataclass(frozen=True)
class ReadinessOutcome:
    """Terminal value of the readiness wait."""

    kind: ReadinessKind
    reason: Optional[str] = None

    @classmethod
    def ready(cls) -> "ReadinessOutcome":
        return cls(ReadinessKind.READY)

    @classmethod
    def timed_out(cls) -> "ReadinessOutcome":
        return cls(ReadinessKind.TIMED_OUT, "timed out waiting for the pod to run")

    @classmethod
    def failed(cls, reason: str) -> "ReadinessOutcome":
        return cls(ReadinessKind.FAILED, reason)

    @property
    def is_ready(self) -> bool:
        return self.kind is ReadinessKind.READY


@dataclass(frozen=True)
class SessionResult:
    """How the stdio relay ended, reported once every direction has stopped."""

    kind: SessionResultKind
    direction: Optional[Direction] = None
    cause: Optional[str] = None
    bytes_relayed: Dict[Direction, int] = field(default_factory=dict, compare=False)

    @classmethod
    def completed(cls, bytes_relayed=None) -> "SessionResult":
        return cls(SessionResultKind.COMPLETED, bytes_relayed=bytes_relayed or {})

    @classmethod
    def interrupted(cls, bytes_relayed=None) -> "SessionResult":
        return cls(SessionResultKind.INTERRUPTED, bytes_relayed=bytes_relayed or {})

    @classmethod
    def pipe_error(cls, direction: Direction, cause: str, bytes_relayed=None) -> "SessionResult":
        return cls(
            SessionResultKind.PIPE_ERROR,
            direction=direction,
            cause=cause,
            bytes_relayed=bytes_relayed or {},
        )


@dataclass(frozen=True)
class SessionReport:
    """Everything the caller needs to report the end of a session."""

    stage: SessionState
    failure: Optional[FailureKind] = None
    detail: Optional[str] = None
    readiness: Optional[ReadinessOutcome] = None
    session_result: Optional[SessionResult] = None
    cleanup_error: Optional[str] = None

    @property
    def exit_code(self) -> int:
        if self.failure is not None or self.session_result is None:
            return 1
        return 0 if self.session_result.kind is SessionResultKind.COMPLETED else 1

    @property
    def cleanup_failure(self) -> Optional[FailureKind]:
        """Cleanup failures are reported alongside the outcome, never instead of it."""
        return FailureKind.CLEANUP_FAILURE if self.cleanup_error else None

    def describe(self) -> str:
        """One line summary for the terminal."""
        if self.failure is None and self.session_result is not None:
            outcome = self.session_result.kind.value
        elif self.failure is not None:
            outcome = self.failure.value
        else:
            outcome = "unknown"
        text = f"session ended at stage '{self.stage.value}': {outcome}"
        if self.detail:
            text += f" ({self.detail})"
        if self.cleanup_failure is not None:
            text += f"; {self.cleanup_failure.value}: {self.cleanup_error}"
        return text
