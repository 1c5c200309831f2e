"""Unit tests for WebSocket transport implementation.

Tests outbound frame ordering, close notification and transport server
lifecycle.
"""

import asyncio
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import websockets
from websockets.asyncio.client import connect
from websockets.protocol import State

from voicerelay.transport.websocket_transport import (
    WebSocketSession,
    WebSocketTransport,
)


class TestWebSocketSession:
    """Test WebSocket session implementation."""

    @pytest.fixture
    def mock_websocket(self) -> MagicMock:
        """Create mock WebSocket connection."""
        ws = MagicMock()
        ws.state = State.OPEN
        ws.remote_address = ("127.0.0.1", 12345)
        ws.send = AsyncMock()
        ws.close = AsyncMock()
        return ws

    def test_session_initialization(self, mock_websocket: MagicMock) -> None:
        """Test session initialization."""
        session = WebSocketSession(mock_websocket, "test-session")

        assert session.session_id == "test-session"
        assert session.is_connected is True

    @pytest.mark.asyncio
    async def test_frames_sent_in_submission_order(self, mock_websocket: MagicMock) -> None:
        """Text and binary frames reach the socket in the order they were queued."""
        session = WebSocketSession(mock_websocket, "test-session")

        session.send_text("a")
        session.send_bytes(b"b")
        session.send_json("c")
        await session.close()

        sent = [call.args[0] for call in mock_websocket.send.call_args_list]
        assert sent == ["a", b"b", '"c"']
        mock_websocket.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_send_does_not_block(self, mock_websocket: MagicMock) -> None:
        release = asyncio.Event()

        async def slow_send(frame: object) -> None:
            await release.wait()

        mock_websocket.send = AsyncMock(side_effect=slow_send)
        session = WebSocketSession(mock_websocket, "test-session")

        session.send_bytes(b"x" * 1024)
        session.send_text("queued")

        release.set()
        await session.close()
        assert mock_websocket.send.await_count == 2

    @pytest.mark.asyncio
    async def test_sends_after_close_dropped(self, mock_websocket: MagicMock) -> None:
        session = WebSocketSession(mock_websocket, "test-session")
        await session.close()

        session.send_text("late")
        session.send_bytes(b"late")
        await asyncio.sleep(0)

        mock_websocket.send.assert_not_called()
        assert session.is_connected is False

    @pytest.mark.asyncio
    async def test_receive_yields_text_and_binary(self, mock_websocket: MagicMock) -> None:
        """Test receiving mixed frames in arrival order."""
        messages: list[str | bytes] = [b"\x01\x02", '{"hello": 1}', b"\x03"]

        async def mock_iter() -> AsyncGenerator[str | bytes]:
            for msg in messages:
                yield msg

        mock_websocket.__aiter__ = lambda self: mock_iter()
        session = WebSocketSession(mock_websocket, "test-session")

        received = [frame async for frame in session.receive()]

        assert received == messages
        assert session.is_connected is False

    @pytest.mark.asyncio
    async def test_close_callback_fires_once(self, mock_websocket: MagicMock) -> None:
        async def mock_iter() -> AsyncGenerator[str]:
            yield "only"

        mock_websocket.__aiter__ = lambda self: mock_iter()
        session = WebSocketSession(mock_websocket, "test-session")
        calls: list[str] = []
        session.add_close_callback(lambda: calls.append("closed"))

        async for _ in session.receive():
            pass
        await session.close()
        session._mark_closed()

        assert calls == ["closed"]

    @pytest.mark.asyncio
    async def test_close_callback_after_close_runs_immediately(
        self, mock_websocket: MagicMock
    ) -> None:
        session = WebSocketSession(mock_websocket, "test-session")
        await session.close()

        calls: list[str] = []
        session.add_close_callback(lambda: calls.append("closed"))

        assert calls == ["closed"]

    @pytest.mark.asyncio
    async def test_peer_gone_while_sending(self, mock_websocket: MagicMock) -> None:
        mock_websocket.send = AsyncMock(
            side_effect=websockets.exceptions.ConnectionClosed(None, None)
        )
        session = WebSocketSession(mock_websocket, "test-session")
        calls: list[str] = []
        session.add_close_callback(lambda: calls.append("closed"))

        session.send_text("hello")
        await asyncio.sleep(0.01)

        assert calls == ["closed"]
        assert session.is_connected is False


class TestWebSocketTransport:
    """Test WebSocket transport server."""

    def test_transport_initialization(self) -> None:
        """Test transport initialization."""
        transport = WebSocketTransport(host="0.0.0.0", port=8080)  # noqa: S104

        assert transport.transport_type == "websocket"
        assert transport.is_running is False

    @pytest.mark.asyncio
    async def test_transport_start_stop(self) -> None:
        """Test transport start and stop."""
        transport = WebSocketTransport(host="127.0.0.1", port=18781)

        await transport.start()
        assert transport.is_running is True

        await transport.stop()
        assert transport.is_running is False

    @pytest.mark.asyncio
    async def test_transport_double_start(self) -> None:
        """Test starting transport twice."""
        transport = WebSocketTransport(host="127.0.0.1", port=18782)

        await transport.start()

        with pytest.raises(RuntimeError, match="already running"):
            await transport.start()

        await transport.stop()

    @pytest.mark.asyncio
    async def test_accept_session_not_running(self) -> None:
        """Test accepting session when transport not running."""
        transport = WebSocketTransport(host="127.0.0.1", port=18783)

        with pytest.raises(RuntimeError, match="not running"):
            await transport.accept_session()

    @pytest.mark.asyncio
    async def test_client_round_trip(self) -> None:
        """A real client exchanges binary and text frames with a session."""
        transport = WebSocketTransport(host="127.0.0.1", port=18784)
        await transport.start()
        try:
            async with connect("ws://127.0.0.1:18784") as client:
                session = await asyncio.wait_for(transport.accept_session(), timeout=2.0)
                assert session.session_id.startswith("ws-")

                await client.send(b"\x00\x01")
                await client.send('{"ping": true}')
                inbound = session.receive()
                assert await anext(inbound) == b"\x00\x01"
                assert await anext(inbound) == '{"ping": true}'

                session.send_json("reply")
                session.send_bytes(b"audio")
                assert await asyncio.wait_for(client.recv(), timeout=2.0) == '"reply"'
                assert await asyncio.wait_for(client.recv(), timeout=2.0) == b"audio"

                await session.close()
                assert session.is_connected is False
        finally:
            await transport.stop()
