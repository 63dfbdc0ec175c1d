"""
Renderer bridge module.

Cross-process event bus between the companion and the renderer.
"""

from .events import Event, EventKind, VoteDirection, decode_event, encode_event, wire_name
from .transport import Transport, UdpTransport, LoopbackTransport
from .bus import EventBus, DEFAULT_PREFIX, QUERY_TIMEOUT

__all__ = [
    "Event",
    "EventKind",
    "VoteDirection",
    "decode_event",
    "encode_event",
    "wire_name",
    "Transport",
    "UdpTransport",
    "LoopbackTransport",
    "EventBus",
    "DEFAULT_PREFIX",
    "QUERY_TIMEOUT",
]
