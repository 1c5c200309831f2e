"""Deepgram live transcription over WebSocket.

Implements the ASR capability contract against Deepgram's streaming
``/v1/listen`` endpoint. Audio goes out as binary frames; control messages
(KeepAlive, CloseStream) and results are JSON text frames.
"""

import asyncio
import json
import logging
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.asyncio.client import ClientConnection, connect
from websockets.protocol import State

from voicerelay.asr.base import (
    AsrClient,
    AsrConnection,
    AsrEvent,
    AsrListener,
    ReadyState,
    Transcript,
)

logger = logging.getLogger(__name__)

_STATE_MAP: dict[State, ReadyState] = {
    State.CONNECTING: ReadyState.OPENING,
    State.OPEN: ReadyState.OPEN,
    State.CLOSING: ReadyState.CLOSING,
    State.CLOSED: ReadyState.CLOSED,
}


def build_listen_url(base_url: str, options: dict[str, Any]) -> str:
    """Encode stream options as Deepgram query parameters."""
    params = {
        key: (str(value).lower() if isinstance(value, bool) else value)
        for key, value in options.items()
        if value is not None
    }
    if not params:
        return base_url
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode(params)}"


class DeepgramConnection(AsrConnection):
    """One live Deepgram stream.

    Connecting starts on construction in a background task; the handle is
    OPENING until the handshake completes.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        open_timeout_s: float = 10.0,
    ) -> None:
        """Initialize and start connecting.

        Args:
            url: Fully-qualified listen URL including query options
            api_key: Deepgram API key
            open_timeout_s: Handshake timeout
        """
        self._url = url
        self._api_key = api_key
        self._open_timeout_s = open_timeout_s
        self._websocket: ClientConnection | None = None
        self._listeners: list[AsrListener] = []
        self._closed = False
        self._task = asyncio.create_task(self._run())

    def add_listener(self, listener: AsrListener) -> None:
        """Register a listener for all events."""
        self._listeners.append(listener)

    def remove_all_listeners(self) -> None:
        """Detach every listener."""
        self._listeners.clear()

    def get_ready_state(self) -> ReadyState:
        """Current readiness mapped from the underlying socket state."""
        if self._closed:
            return ReadyState.CLOSED
        if self._websocket is None:
            return ReadyState.OPENING
        return _STATE_MAP[self._websocket.state]

    async def send(self, data: bytes) -> None:
        """Forward a raw audio chunk."""
        if self._websocket is None:
            raise ConnectionError("Deepgram stream is not open")
        try:
            await self._websocket.send(data)
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionError(f"Deepgram stream closed: {e}") from e

    async def keep_alive(self) -> None:
        """Send a KeepAlive control message."""
        if self.get_ready_state() != ReadyState.OPEN or self._websocket is None:
            return
        logger.debug("Deepgram keepalive")
        await self._websocket.send(json.dumps({"type": "KeepAlive"}))

    async def finish(self) -> None:
        """Ask Deepgram to flush and close, then close the socket."""
        if self._websocket is None:
            # Still connecting: abandon the handshake
            self._closed = True
            self._task.cancel()
            return

        try:
            if self._websocket.state == State.OPEN:
                await self._websocket.send(json.dumps({"type": "CloseStream"}))
            await self._websocket.close()
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self._closed = True

    async def _run(self) -> None:
        """Connect, then read messages until the socket closes."""
        try:
            self._websocket = await connect(
                self._url,
                additional_headers={"Authorization": f"Token {self._api_key}"},
                open_timeout=self._open_timeout_s,
            )
        except (OSError, TimeoutError, websockets.exceptions.WebSocketException) as e:
            self._closed = True
            logger.error("Deepgram connection failed", extra={"error": str(e)})
            self._emit(AsrEvent.ERROR, {"stage": "connect", "message": str(e)})
            self._emit(AsrEvent.CLOSED, None)
            return

        self._emit(AsrEvent.OPENED, None)

        try:
            async for message in self._websocket:
                if isinstance(message, bytes):
                    continue
                self._dispatch(message)
        except websockets.exceptions.ConnectionClosedError as e:
            self._emit(
                AsrEvent.ERROR,
                {"stage": "stream", "code": e.rcvd.code if e.rcvd else None, "message": str(e)},
            )
        finally:
            self._closed = True
            self._emit(AsrEvent.CLOSED, None)

    def _dispatch(self, raw: str) -> None:
        """Translate one Deepgram JSON message into an event."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON from Deepgram", extra={"error": str(e)})
            return

        message_type = data.get("type")
        if message_type == "Results":
            alternatives = data.get("channel", {}).get("alternatives") or [{}]
            transcript = Transcript(
                text=alternatives[0].get("transcript", ""),
                is_final=bool(data.get("is_final", False)),
                metadata=data,
            )
            self._emit(AsrEvent.TRANSCRIPT, transcript)
        elif message_type == "Metadata":
            self._emit(AsrEvent.METADATA, data)
        elif message_type == "Warning":
            self._emit(AsrEvent.WARNING, data)
        elif message_type == "Error":
            self._emit(AsrEvent.ERROR, data)
        else:
            logger.debug("Ignoring Deepgram message", extra={"type": message_type})

    def _emit(self, event: AsrEvent, payload: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                logger.exception("ASR listener failed", extra={"event": event.value})


class DeepgramClient(AsrClient):
    """Opens Deepgram live transcription streams."""

    def __init__(
        self,
        api_key: str,
        url: str = "wss://api.deepgram.com/v1/listen",
        open_timeout_s: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self.url = url
        self.open_timeout_s = open_timeout_s

    def listen(self, options: dict[str, Any]) -> DeepgramConnection:
        """Start opening a new live stream with the given options."""
        url = build_listen_url(self.url, options)
        logger.info("Opening Deepgram stream", extra={"options": options})
        return DeepgramConnection(url, self.api_key, open_timeout_s=self.open_timeout_s)
