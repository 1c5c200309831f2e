"""Base transport abstraction for client connections.

Defines the interface a client transport must implement so the session
orchestrator can relay audio and text without knowing the wire details.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import Any

# Inbound frame: bytes for audio, str for text
Frame = bytes | str

CloseCallback = Callable[[], None]


class TransportSession(ABC):
    """Base class for a single duplex client connection.

    Outbound sends are fire-and-forget: they enqueue and return immediately,
    but frames reach the client in submission order. Sends after the
    connection has closed are discarded.
    """

    @abstractmethod
    def send_bytes(self, data: bytes) -> None:
        """Queue a binary frame (synthesized audio) for the client."""
        pass

    @abstractmethod
    def send_text(self, text: str) -> None:
        """Queue a text frame for the client."""
        pass

    def send_json(self, value: Any) -> None:
        """JSON-encode a value and queue it as a text frame."""
        self.send_text(json.dumps(value))

    @abstractmethod
    async def receive(self) -> AsyncIterator[Frame]:
        """Receive inbound frames from the client in arrival order.

        Yields:
            bytes for audio frames, str for text frames

        Iteration ends when the client disconnects.
        """
        # Using yield to make this an async generator
        if False:
            yield b""

    @abstractmethod
    def add_close_callback(self, callback: CloseCallback) -> None:
        """Register a callback fired exactly once when the connection closes."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection and release transport resources."""
        pass

    @property
    @abstractmethod
    def session_id(self) -> str:
        """Unique session identifier for logging and tracking."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the connection is still active."""
        pass


class Transport(ABC):
    """Base transport implementation.

    Manages the lifecycle of a transport server and creates sessions for
    incoming client connections.
    """

    @abstractmethod
    async def start(self) -> None:
        """Start the transport server.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport server and close active connections."""
        pass

    @abstractmethod
    async def accept_session(self) -> TransportSession:
        """Block until a new client connects and return its session.

        Raises:
            RuntimeError: If the transport is not running
        """
        pass

    @property
    @abstractmethod
    def transport_type(self) -> str:
        """Transport type identifier (e.g., 'websocket')."""
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        pass
