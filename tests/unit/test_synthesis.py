"""Unit tests for the speech synthesis invoker.

Runs the client against a local aiohttp stand-in for the TTS API.
"""

import asyncio
from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from voicerelay.config import VoiceSettings
from voicerelay.errors import BackendError
from voicerelay.synthesis import SynthesisClient

AUDIO = b"ID3" + bytes(range(256)) * 100


def make_tts_app(received: list[dict[str, Any]], status: int = 200, delay_s: float = 0.0):
    async def stream(request: web.Request) -> web.StreamResponse:
        received.append(
            {
                "voice_id": request.match_info["voice_id"],
                "query": dict(request.query),
                "api_key": request.headers.get("xi-api-key"),
                "body": await request.json(),
            }
        )
        if delay_s:
            await asyncio.sleep(delay_s)
        if status != 200:
            return web.json_response({"detail": "invalid api key"}, status=status)

        response = web.StreamResponse(headers={"Content-Type": "audio/mpeg"})
        await response.prepare(request)
        for i in range(0, len(AUDIO), 1000):
            await response.write(AUDIO[i : i + 1000])
        await response.write_eof()
        return response

    app = web.Application()
    app.router.add_post("/v1/text-to-speech/{voice_id}/stream", stream)
    return app


def make_client(server: TestServer, **kwargs: Any) -> SynthesisClient:
    return SynthesisClient(
        api_key="el-key",
        voice_id="voice-1",
        base_url=str(server.make_url("/")),
        **kwargs,
    )


def test_build_request() -> None:
    client = SynthesisClient(api_key="k", voice_id="voice-1")

    request = client.build_request("Hello there")

    assert request == {
        "voice_id": "voice-1",
        "model_id": "eleven_flash_v2_5",
        "text": "Hello there",
        "output_format": "mp3_44100_128",
        "voice_settings": {
            "stability": 0.0,
            "similarity_boost": 1.0,
            "use_speaker_boost": True,
            "speed": 1.0,
        },
    }


@pytest.mark.asyncio
async def test_synthesize_accumulates_stream() -> None:
    """Test streamed chunks are joined into one audio payload."""
    received: list[dict[str, Any]] = []
    async with TestServer(make_tts_app(received)) as server:
        client = make_client(server, voice_settings=VoiceSettings(stability=0.5))
        try:
            audio = await client.synthesize("Hello there")
        finally:
            await client.close()

    assert audio == AUDIO
    assert received[0]["voice_id"] == "voice-1"
    assert received[0]["query"] == {"output_format": "mp3_44100_128"}
    assert received[0]["api_key"] == "el-key"
    assert received[0]["body"]["text"] == "Hello there"
    assert received[0]["body"]["model_id"] == "eleven_flash_v2_5"
    assert received[0]["body"]["voice_settings"]["stability"] == 0.5


@pytest.mark.asyncio
async def test_session_reused_across_calls() -> None:
    received: list[dict[str, Any]] = []
    async with TestServer(make_tts_app(received)) as server:
        client = make_client(server)
        try:
            await client.synthesize("one")
            session = client._session
            await client.synthesize("two")
            assert client._session is session
        finally:
            await client.close()

    assert [r["body"]["text"] for r in received] == ["one", "two"]


@pytest.mark.asyncio
async def test_http_error_mapped() -> None:
    received: list[dict[str, Any]] = []
    async with TestServer(make_tts_app(received, status=401)) as server:
        client = make_client(server)
        try:
            with pytest.raises(BackendError) as exc_info:
                await client.synthesize("Hello")
        finally:
            await client.close()

    assert exc_info.value.service == "synthesis"
    assert exc_info.value.status == 401
    assert exc_info.value.category == "http_status"


@pytest.mark.asyncio
async def test_timeout_mapped() -> None:
    received: list[dict[str, Any]] = []
    async with TestServer(make_tts_app(received, delay_s=1.0)) as server:
        client = make_client(server, timeout_s=0.05)
        try:
            with pytest.raises(BackendError) as exc_info:
                await client.synthesize("Hello")
        finally:
            await client.close()

    assert exc_info.value.category == "timeout"


@pytest.mark.asyncio
async def test_connection_failure_mapped() -> None:
    client = SynthesisClient(api_key="k", voice_id="v", base_url="http://127.0.0.1:1")
    try:
        with pytest.raises(BackendError) as exc_info:
            await client.synthesize("Hello")
    finally:
        await client.close()

    assert exc_info.value.category == "stream"
