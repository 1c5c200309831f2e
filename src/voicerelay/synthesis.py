"""Speech synthesis invoker.

Stateless adapter over the ElevenLabs streaming text-to-speech endpoint:
reply text in, the complete synthesized audio out. Streamed chunks are
accumulated into a single byte string.
"""

import logging
import time
from typing import Any

import aiohttp

from voicerelay.config import VoiceSettings
from voicerelay.errors import BackendError

logger = logging.getLogger(__name__)

CHUNK_SIZE_BYTES = 8192


class SynthesisClient:
    """Request/response TTS adapter backed by an aiohttp session.

    The HTTP session is created on first use and shared by every call;
    ``close()`` releases it.
    """

    def __init__(
        self,
        api_key: str,
        voice_id: str,
        model_id: str = "eleven_flash_v2_5",
        output_format: str = "mp3_44100_128",
        voice_settings: VoiceSettings | None = None,
        base_url: str = "https://api.elevenlabs.io",
        timeout_s: float = 30.0,
    ) -> None:
        """Initialize synthesis client.

        Args:
            api_key: ElevenLabs API key
            voice_id: Voice identifier
            model_id: Synthesis model
            output_format: Audio codec/sample-rate/bitrate string
            voice_settings: Voice tuning
            base_url: API base URL
            timeout_s: Total request timeout in seconds
        """
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.output_format = output_format
        self.voice_settings = voice_settings or VoiceSettings()
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session: aiohttp.ClientSession | None = None

    def build_request(self, text: str) -> dict[str, Any]:
        """Synthesis request fields for a piece of text."""
        return {
            "voice_id": self.voice_id,
            "model_id": self.model_id,
            "text": text,
            "output_format": self.output_format,
            "voice_settings": self.voice_settings.model_dump(),
        }

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def synthesize(self, text: str) -> bytes:
        """Synthesize text into audio.

        Args:
            text: Text to speak

        Returns:
            Complete audio in the configured output format

        Raises:
            BackendError: On non-success status or a failure while streaming
        """
        request = self.build_request(text)
        url = f"{self.base_url}/v1/text-to-speech/{request['voice_id']}/stream"
        params = {"output_format": request["output_format"]}
        body = {
            "text": request["text"],
            "model_id": request["model_id"],
            "voice_settings": request["voice_settings"],
        }
        headers = {"xi-api-key": self.api_key, "Accept": "audio/mpeg"}

        start = time.monotonic()
        chunks: list[bytes] = []
        try:
            async with self._get_session().post(
                url, params=params, json=body, headers=headers
            ) as response:
                if response.status != 200:
                    detail = await response.text()
                    raise BackendError(
                        "synthesis",
                        f"HTTP {response.status}: {detail[:200]}",
                        status=response.status,
                        category="http_status",
                    )

                async for chunk in response.content.iter_chunked(CHUNK_SIZE_BYTES):
                    chunks.append(chunk)

        except TimeoutError as e:
            raise BackendError("synthesis", "request timed out", category="timeout") from e
        except aiohttp.ClientError as e:
            raise BackendError("synthesis", str(e), category="stream") from e

        audio = b"".join(chunks)
        logger.info(
            "Synthesis complete",
            extra={
                "voice_id": self.voice_id,
                "text_length": len(text),
                "audio_bytes": len(audio),
                "latency_ms": (time.monotonic() - start) * 1000.0,
            },
        )
        return audio

    async def close(self) -> None:
        """Close the shared HTTP session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
