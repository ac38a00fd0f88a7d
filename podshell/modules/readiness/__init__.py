"""
Readiness Module - Black Box Interface

Purpose: Decide when a freshly created pod is safe to attach to
Interface: await_ready(), evaluate_event()
Hidden: Deadline tracking, stream cancellation

Replaceable with any readiness policy that resolves to a ReadinessOutcome.
"""

from .watcher import await_ready, evaluate_event

__all__ = ["await_ready", "evaluate_event"]
