"""
Orchestrator Module - Black Box Interface

Purpose: Sequence one pod shell session and guarantee the pod is deleted
Interface: SessionOrchestrator.run()
Hidden: State transitions, cancellation races, cleanup bookkeeping

Replaceable with any sequencing policy that honours create-once / delete-once.
"""

from .orchestrator import SessionOrchestrator

__all__ = ["SessionOrchestrator"]
