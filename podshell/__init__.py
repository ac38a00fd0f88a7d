"""
podshell - Ephemeral Pod Shell

Creates a throwaway pod, waits for it to run, attaches the local terminal
to a shell inside it and deletes the pod when the session ends.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- api: Shared data models and boundary errors
- cluster: The Kubernetes control-plane boundary
- watch: Pod lifecycle notification stream
- readiness: Decides when a pod is safe to attach to
- attach: Channel set and the stdio relay session
- orchestrator: Create / wait / attach / delete sequencing
"""

__version__ = "1.0.0"
