"""Configuration provider following Black Box Design principles."""
import math
import os
import shlex
from dataclasses import dataclass
from typing import List, Optional, Protocol


@dataclass
class ClusterConfig:
    """Cluster connection configuration."""
    namespace: str
    kubeconfig: Optional[str]
    context: Optional[str]


@dataclass
class WorkloadConfig:
    """The pod to create."""
    name: str
    image: str
    command: List[str]


@dataclass
class AttachConfig:
    """The process to exec and which streams to open."""
    command: List[str]
    stdin: bool
    stdout: bool
    stderr: bool
    tty: bool


@dataclass
class SessionConfig:
    """Session timing and policy."""
    ready_timeout: float
    session_seconds: float
    tolerate_existing: bool
    resource_version: str
    poll_interval: float
    log_level: str

    @property
    def watch_timeout_seconds(self) -> int:
        """Server-side watch bound, rounded up so it never ends before the local timeout."""
        return max(1, math.ceil(self.ready_timeout))


class ConfigProvider(Protocol):
    """Protocol for configuration providers."""

    def get_cluster_config(self) -> ClusterConfig:
        """Get cluster connection configuration."""
        ...

    def get_workload_config(self) -> WorkloadConfig:
        """Get pod configuration."""
        ...

    def get_attach_config(self) -> AttachConfig:
        """Get exec configuration."""
        ...

    def get_session_config(self) -> SessionConfig:
        """Get session configuration."""
        ...


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def _env_positive_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be greater than zero, got {raw!r}")
    return value


def _env_command(name: str, default: str) -> List[str]:
    command = shlex.split(os.getenv(name, default))
    if not command:
        raise ValueError(f"{name} must not be empty")
    return command


class EnvConfigProvider:
    """Environment-based configuration provider."""

    def get_cluster_config(self) -> ClusterConfig:
        """Get cluster configuration from environment variables."""
        return ClusterConfig(
            namespace=os.getenv("NAMESPACE", "default"),
            kubeconfig=os.getenv("KUBECONFIG") or None,
            context=os.getenv("PODSHELL_CONTEXT") or None,
        )

    def get_workload_config(self) -> WorkloadConfig:
        """Get pod configuration from environment variables."""
        return WorkloadConfig(
            name=os.getenv("PODSHELL_POD_NAME", "example"),
            image=os.getenv("PODSHELL_IMAGE", "alpine"),
            # Do nothing, keep the container alive for exec
            command=_env_command("PODSHELL_COMMAND", "tail -f /dev/null"),
        )

    def get_attach_config(self) -> AttachConfig:
        """Get exec configuration from environment variables."""
        return AttachConfig(
            command=_env_command("PODSHELL_EXEC_COMMAND", "sh"),
            stdin=_env_bool("PODSHELL_STDIN", True),
            stdout=_env_bool("PODSHELL_STDOUT", True),
            stderr=_env_bool("PODSHELL_STDERR", False),
            tty=_env_bool("PODSHELL_TTY", True),
        )

    def get_session_config(self) -> SessionConfig:
        """Get session configuration from environment variables."""
        return SessionConfig(
            ready_timeout=_env_positive_float("PODSHELL_READY_TIMEOUT", "10"),
            session_seconds=_env_positive_float("PODSHELL_SESSION_SECONDS", "15"),
            tolerate_existing=_env_bool("PODSHELL_TOLERATE_EXISTING", True),
            resource_version=os.getenv("PODSHELL_RESOURCE_VERSION", "0"),
            poll_interval=_env_positive_float("PODSHELL_POLL_INTERVAL", "0.2"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
