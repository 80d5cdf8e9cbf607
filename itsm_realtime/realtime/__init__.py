"""
ITSM Realtime delivery: hub, per-session buffers, WebSocket pumps.
"""

from .buffer import OutboundBuffer
from .hub import NotificationHub, Session, encode_message
from .connection import serve_session

__all__ = [
    "OutboundBuffer",
    "NotificationHub", "Session", "encode_message",
    "serve_session",
]
