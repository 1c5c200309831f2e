"""ASR stream manager.

Owns one live stream to the ASR backend for a session, forwards audio,
keeps the stream alive with a heartbeat, and relays backend events to a
single session-level listener.

The heartbeat task belongs to the manager instance. It is started when the
stream reports OPENED and cancelled when the stream reports CLOSED or when
``close()`` is called, so a manager never holds more than one live timer.
"""

import asyncio
import logging
from typing import Any

from voicerelay.asr.base import AsrClient, AsrConnection, AsrEvent, AsrListener, ReadyState
from voicerelay.errors import AsrStreamError

logger = logging.getLogger(__name__)


class AsrStreamManager:
    """Manages one ASR stream and its keepalive timer.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(
        self,
        client: AsrClient,
        options: dict[str, Any],
        keepalive_interval_s: float = 10.0,
        listener: AsrListener | None = None,
        session_id: str = "",
    ) -> None:
        """Initialize stream manager. No connection is made until ``open()``.

        Args:
            client: ASR client used to open streams
            options: Stream options passed to the backend
            keepalive_interval_s: Heartbeat interval while OPEN
            listener: Receives every translated event
            session_id: Owning session, for logging
        """
        self._client = client
        self._options = dict(options)
        self._keepalive_interval_s = keepalive_interval_s
        self._listener = listener
        self._session_id = session_id

        self._connection: AsrConnection | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._closed = False

        # Timer hygiene counters
        self.keepalives_started = 0
        self.keepalives_cancelled = 0

    @property
    def ready_state(self) -> ReadyState:
        """Readiness of the managed stream.

        A manager that has not opened a stream yet reports OPENING; a closed
        manager always reports CLOSED.
        """
        if self._closed:
            return ReadyState.CLOSED
        if self._connection is None:
            return ReadyState.OPENING
        return self._connection.get_ready_state()

    @property
    def keepalive_active(self) -> bool:
        """Whether a heartbeat timer is currently scheduled."""
        return self._keepalive_task is not None

    @property
    def is_closed(self) -> bool:
        """Whether ``close()`` has been called."""
        return self._closed

    def open(self) -> None:
        """Open a stream to the backend.

        No-op while the current stream is live. After the current stream has
        closed, a fresh stream is created; the old handle is never reused.

        Raises:
            RuntimeError: If the manager has been closed
        """
        if self._closed:
            raise RuntimeError("ASR stream manager is closed")

        if self._connection is not None:
            if not self._connection.get_ready_state().is_terminal:
                return
            self._connection.remove_all_listeners()

        logger.info("Opening ASR stream", extra={"session_id": self._session_id})
        self._connection = self._client.listen(self._options)
        self._connection.add_listener(self._on_connection_event)

    async def send(self, chunk: bytes) -> None:
        """Forward a raw audio chunk.

        Raises:
            AsrStreamError: If the stream is not OPEN or the send fails
        """
        if self._connection is None or self.ready_state != ReadyState.OPEN:
            raise AsrStreamError(f"ASR stream not open (state={self.ready_state.name})")

        try:
            await self._connection.send(chunk)
        except ConnectionError as e:
            raise AsrStreamError(f"ASR send failed: {e}") from e

    async def close(self) -> None:
        """Finish the stream and release the timer and listeners.

        The timer is cancelled and listeners are detached before the first
        suspension point, so no callback fires once this is called.
        """
        if self._closed:
            return
        self._closed = True

        self._stop_keepalive()
        self._listener = None

        connection = self._connection
        if connection is None:
            return

        connection.remove_all_listeners()
        try:
            await connection.finish()
        except Exception as e:
            logger.warning(
                "Error finishing ASR stream",
                extra={"session_id": self._session_id, "error": str(e)},
            )

        logger.info("ASR stream closed", extra={"session_id": self._session_id})

    def _on_connection_event(self, event: AsrEvent, payload: Any) -> None:
        """Handle an event from the connection and forward it."""
        if event == AsrEvent.OPENED:
            logger.info("ASR stream opened", extra={"session_id": self._session_id})
            self._start_keepalive()
        elif event == AsrEvent.CLOSED:
            logger.info("ASR stream disconnected", extra={"session_id": self._session_id})
            self._stop_keepalive()

        if self._listener is not None:
            self._listener(event, payload)

    def _start_keepalive(self) -> None:
        if self._keepalive_task is not None or self._closed:
            return
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())
        self.keepalives_started += 1

    def _stop_keepalive(self) -> None:
        if self._keepalive_task is None:
            return
        self._keepalive_task.cancel()
        self._keepalive_task = None
        self.keepalives_cancelled += 1

    async def _keepalive_loop(self) -> None:
        """Send a heartbeat every interval until cancelled."""
        while True:
            await asyncio.sleep(self._keepalive_interval_s)
            connection = self._connection
            if connection is None or connection.get_ready_state() != ReadyState.OPEN:
                continue
            try:
                await connection.keep_alive()
                logger.debug("ASR keepalive sent", extra={"session_id": self._session_id})
            except Exception as e:
                logger.warning(
                    "ASR keepalive failed",
                    extra={"session_id": self._session_id, "error": str(e)},
                )
