"""
Attach Module - Black Box Interface

Purpose: Relay a local terminal through an exec connection
Interface: AttachSession.run(), ChannelSet, LocalEndpoints
Hidden: Websocket demultiplexing, copy loops, raw terminal handling

Replaceable with any transport that exposes stdin/stdout/stderr byte streams.
"""

from .channels import ChannelReader, ChannelSet, ChannelWriter, WebSocketTransport
from .session import AttachSession
from .terminal import FdReader, LocalEndpoints, StreamWriter, raw_terminal

__all__ = [
    "AttachSession",
    "ChannelReader",
    "ChannelSet",
    "ChannelWriter",
    "FdReader",
    "LocalEndpoints",
    "StreamWriter",
    "WebSocketTransport",
    "raw_terminal",
]
