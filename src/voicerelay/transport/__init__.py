"""Transport layer for client connections.

Provides abstraction over the client-facing duplex channel.
"""

from voicerelay.transport.base import Transport, TransportSession
from voicerelay.transport.websocket_transport import (
    WebSocketSession,
    WebSocketTransport,
)

__all__ = [
    "Transport",
    "TransportSession",
    "WebSocketSession",
    "WebSocketTransport",
]
