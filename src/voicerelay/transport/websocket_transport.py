"""WebSocket transport implementation.

Provides WebSocket-based client connections for the relay. Binary frames
carry raw audio, text frames carry JSON values.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

import websockets
from websockets.asyncio.server import ServerConnection
from websockets.protocol import State

from voicerelay.transport.base import (
    CloseCallback,
    Frame,
    Transport,
    TransportSession,
)

logger = logging.getLogger(__name__)


class WebSocketSession(TransportSession):
    """WebSocket-based transport session.

    Outbound frames go through a FIFO queue drained by a single writer
    task, so callers never await a send and submission order is kept.
    """

    def __init__(self, websocket: ServerConnection, session_id: str) -> None:
        """Initialize WebSocket session.

        Args:
            websocket: WebSocket connection
            session_id: Unique session identifier
        """
        self._websocket = websocket
        self._session_id = session_id
        self._connected = True
        self._outbound: asyncio.Queue[Frame | None] = asyncio.Queue()
        self._writer_task: asyncio.Task[None] | None = None
        self._close_callbacks: list[CloseCallback] = []
        self._close_notified = False

        logger.info(
            "WebSocket session initialized",
            extra={"session_id": session_id, "remote": websocket.remote_address},
        )

    @property
    def session_id(self) -> str:
        """Get unique session identifier."""
        return self._session_id

    @property
    def is_connected(self) -> bool:
        """Check if the session connection is still active."""
        return self._connected and self._websocket.state == State.OPEN

    def send_bytes(self, data: bytes) -> None:
        """Queue a binary frame for the client."""
        self._enqueue(bytes(data))

    def send_text(self, text: str) -> None:
        """Queue a text frame for the client."""
        self._enqueue(text)

    def _enqueue(self, frame: Frame) -> None:
        if not self._connected:
            logger.debug(
                "Dropping outbound frame on closed session",
                extra={"session_id": self._session_id, "binary": isinstance(frame, bytes)},
            )
            return

        self._outbound.put_nowait(frame)
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._writer_loop())

    async def _writer_loop(self) -> None:
        """Drain the outbound queue in order until the sentinel or a closed socket."""
        while True:
            frame = await self._outbound.get()
            if frame is None:
                break

            try:
                await self._websocket.send(frame)
            except websockets.exceptions.ConnectionClosed:
                logger.info(
                    "WebSocket closed while sending",
                    extra={"session_id": self._session_id},
                )
                self._mark_closed()
                break
            except Exception as e:
                logger.error(
                    "Failed to send frame",
                    extra={"session_id": self._session_id, "error": str(e)},
                )

    async def receive(self) -> AsyncIterator[Frame]:
        """Receive frames from the client until it disconnects.

        Yields:
            bytes for binary (audio) frames, str for text frames
        """
        try:
            async for message in self._websocket:
                yield message
        except websockets.exceptions.ConnectionClosed:
            logger.info(
                "WebSocket connection closed by client",
                extra={"session_id": self._session_id},
            )
        finally:
            self._mark_closed()

    def add_close_callback(self, callback: CloseCallback) -> None:
        """Register a callback fired exactly once when the connection closes."""
        if self._close_notified:
            callback()
            return
        self._close_callbacks.append(callback)

    def _mark_closed(self) -> None:
        """Flag the session closed and notify listeners once."""
        self._connected = False
        if self._close_notified:
            return
        self._close_notified = True

        for callback in self._close_callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(
                    "Close callback failed",
                    extra={"session_id": self._session_id, "error": str(e)},
                )
        self._close_callbacks.clear()

    async def close(self, flush_timeout_s: float = 1.0) -> None:
        """Flush queued frames, then close the WebSocket.

        Args:
            flush_timeout_s: Maximum time to wait for queued frames to be sent
        """
        if not self._connected:
            return

        logger.info("Closing WebSocket session", extra={"session_id": self._session_id})

        try:
            if self._writer_task is not None and not self._writer_task.done():
                self._outbound.put_nowait(None)
                await asyncio.wait_for(self._writer_task, timeout=flush_timeout_s)
            await self._websocket.close()
        except TimeoutError:
            logger.warning(
                "Timed out flushing outbound frames",
                extra={"session_id": self._session_id},
            )
            await self._websocket.close()
        except Exception as e:
            logger.warning(
                "Error during session close",
                extra={"session_id": self._session_id, "error": str(e)},
            )
        finally:
            self._mark_closed()
            if self._writer_task is not None and not self._writer_task.done():
                self._writer_task.cancel()


class WebSocketTransport(Transport):
    """WebSocket transport server.

    Manages WebSocket server lifecycle and creates WebSocketSession
    instances for incoming client connections.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 8080,
        max_message_bytes: int = 2**20,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            host: Bind host address
            port: Bind port
            max_message_bytes: Maximum inbound frame size
        """
        self._host = host
        self._port = port
        self._max_message_bytes = max_message_bytes
        self._server: Any = None  # websockets.Server type
        self._running = False
        self._session_queue: asyncio.Queue[WebSocketSession] = asyncio.Queue()

        logger.info(
            "WebSocket transport initialized",
            extra={"host": host, "port": port},
        )

    @property
    def transport_type(self) -> str:
        """Transport type identifier."""
        return "websocket"

    @property
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        return self._running

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info(
            "Starting WebSocket server", extra={"host": self._host, "port": self._port}
        )

        try:
            self._server = await websockets.serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_message_bytes,
            )
            self._running = True

            logger.info(
                "WebSocket server started",
                extra={"host": self._host, "port": self._port},
            )

        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error(
                "Failed to start WebSocket server",
                extra={"error": str(e)},
            )
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

    async def stop(self) -> None:
        """Stop the WebSocket server."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")

        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def accept_session(self) -> TransportSession:
        """Block until a new client connects and return its session.

        Raises:
            RuntimeError: If the transport is not running
        """
        if not self._running:
            raise RuntimeError("WebSocket transport is not running")

        return await self._session_queue.get()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Handle incoming WebSocket connection.

        Args:
            websocket: WebSocket connection
        """
        session_id = f"ws-{uuid.uuid4().hex[:12]}"

        logger.info(
            "New WebSocket connection",
            extra={"session_id": session_id, "remote": websocket.remote_address},
        )

        session = WebSocketSession(websocket, session_id)
        await self._session_queue.put(session)

        # Keep the connection open until the client or the session closes it
        try:
            await websocket.wait_closed()
        except Exception as e:
            logger.error(
                "Error in connection handler",
                extra={"session_id": session_id, "error": str(e)},
            )
        finally:
            session._mark_closed()
            logger.info(
                "WebSocket connection closed",
                extra={"session_id": session_id},
            )
