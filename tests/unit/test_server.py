"""Unit tests for server wiring."""

import asyncio
from pathlib import Path

import pytest

from tests.helpers.fakes import (
    FakeAsrClient,
    FakeCompleter,
    FakeSynthesizer,
    FakeTransport,
    drain,
)
from voicerelay.config import RelayConfig
from voicerelay.errors import ConfigurationError
from voicerelay.registry import SessionRegistry
from voicerelay.server import handle_session, start_server


@pytest.mark.asyncio
async def test_handle_session_registers_until_disconnect() -> None:
    registry = SessionRegistry()
    transport = FakeTransport(session_id="ws-abc")
    client = FakeAsrClient(auto_open=True)

    task = asyncio.create_task(
        handle_session(
            transport, registry, client, FakeCompleter(), FakeSynthesizer(), RelayConfig()
        )
    )
    await drain()

    assert "ws-abc" in registry
    assert len(client.connections) == 1

    transport.disconnect()
    await asyncio.wait_for(task, timeout=1.0)

    assert "ws-abc" not in registry
    assert client.latest.finished


@pytest.mark.asyncio
async def test_sessions_are_independent() -> None:
    registry = SessionRegistry()
    client = FakeAsrClient(auto_open=True)
    first, second = FakeTransport("ws-1"), FakeTransport("ws-2")
    config = RelayConfig()

    tasks = [
        asyncio.create_task(
            handle_session(t, registry, client, FakeCompleter(), FakeSynthesizer(), config)
        )
        for t in (first, second)
    ]
    await drain()
    assert len(registry) == 2

    first.disconnect()
    await asyncio.wait_for(tasks[0], timeout=1.0)

    assert len(registry) == 1
    remaining = registry.get("ws-2")
    assert remaining is not None
    assert remaining.state.value == "active"

    second.disconnect()
    await asyncio.wait_for(tasks[1], timeout=1.0)
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_start_server_rejects_missing_credentials(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Startup stops before binding any port when credentials are missing."""
    for name in ("DEEPGRAM_API_KEY", "OPENAI_API_KEY", "ELEVENLABS_API_KEY", "VOICE_ID"):
        monkeypatch.delenv(name, raising=False)

    with pytest.raises(ConfigurationError, match="DEEPGRAM_API_KEY"):
        await start_server(tmp_path / "missing.yaml")
