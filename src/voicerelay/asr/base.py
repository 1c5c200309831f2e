"""Capability contract for streaming ASR (speech-to-text) services.

A client opens a live stream and gets back a connection handle. The handle
accepts raw audio, heartbeats and a graceful finish, reports a readiness
state mirroring a duplex socket, and emits events to registered listeners.

Lifecycle:
    1. ``client.listen(options)`` returns a handle in the OPENING state
    2. The handle emits OPENED once the backend accepts the stream
    3. ``send()`` / ``keep_alive()`` while OPEN
    4. ``finish()`` (or a backend disconnect) leads to CLOSED
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any


class ReadyState(IntEnum):
    """Readiness of a streaming connection.

    Integer values match WebSocket readyState numbering so that
    ``state >= CLOSING`` means the stream can no longer accept audio.
    """

    OPENING = 0
    OPEN = 1
    CLOSING = 2
    CLOSED = 3

    @property
    def is_terminal(self) -> bool:
        """Whether the stream is closing or closed."""
        return self >= ReadyState.CLOSING


class AsrEvent(str, Enum):
    """Events emitted by an ASR connection."""

    OPENED = "opened"
    TRANSCRIPT = "transcript"
    METADATA = "metadata"
    WARNING = "warning"
    ERROR = "error"
    CLOSED = "closed"


@dataclass(frozen=True)
class Transcript:
    """A transcript result from the ASR stream.

    Attributes:
        text: Transcribed text of the best alternative (may be empty)
        is_final: Whether the backend will not revise this segment
        metadata: Raw backend payload for the result
    """

    text: str
    is_final: bool
    metadata: dict[str, Any] = field(default_factory=dict)


# Listener receives the event kind and its payload:
#   TRANSCRIPT -> Transcript, METADATA/WARNING/ERROR -> dict, others -> None
AsrListener = Callable[[AsrEvent, Any], None]


class AsrConnection(ABC):
    """Handle for one live ASR stream. Never reused after CLOSED."""

    @abstractmethod
    async def send(self, data: bytes) -> None:
        """Forward a raw audio chunk. Only valid while OPEN."""
        ...

    @abstractmethod
    async def keep_alive(self) -> None:
        """Send a no-op heartbeat so the backend does not time out the stream."""
        ...

    @abstractmethod
    async def finish(self) -> None:
        """Gracefully finish the stream and release the socket."""
        ...

    @abstractmethod
    def get_ready_state(self) -> ReadyState:
        """Current readiness of the stream."""
        ...

    @abstractmethod
    def add_listener(self, listener: AsrListener) -> None:
        """Register a listener for all events."""
        ...

    @abstractmethod
    def remove_all_listeners(self) -> None:
        """Detach every listener; no event is delivered afterwards."""
        ...


class AsrClient(ABC):
    """Factory for ASR connections."""

    @abstractmethod
    def listen(self, options: dict[str, Any]) -> AsrConnection:
        """Start opening a new live stream.

        Returns immediately with a handle in the OPENING state; the handle
        emits OPENED or ERROR/CLOSED once the backend answers.

        Args:
            options: Stream options (at minimum ``smart_format`` and ``model``)
        """
        ...
