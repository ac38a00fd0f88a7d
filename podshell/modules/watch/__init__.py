"""
Watch Module - Black Box Interface

Purpose: Deliver pod lifecycle notifications as typed events
Interface: LifecycleStream (async iteration, aclose()), translate_event()
Hidden: Watch thread, queue hand-off, raw notification parsing

Replaceable with any source of ADDED/MODIFIED/DELETED/ERROR notifications.
"""

from .stream import LifecycleStream, translate_event

__all__ = ["LifecycleStream", "translate_event"]
