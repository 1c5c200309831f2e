"""Configuration schema for the voice relay.

Defines Pydantic models for loading and validating relay configuration
from YAML files and environment variables. Credentials are normally
supplied through the environment and are validated once at startup.
"""

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from voicerelay.errors import ConfigurationError


class ServerConfig(BaseModel):
    """Client-facing WebSocket server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8080, ge=1, le=65535, description="WebSocket listen port")
    health_port: int | None = Field(
        default=None,
        ge=1,
        le=65535,
        description="Health check HTTP port (defaults to port + 1)",
    )
    max_message_bytes: int = Field(
        default=2**20, ge=1024, description="Maximum inbound frame size"
    )

    @property
    def resolved_health_port(self) -> int:
        """Health port, falling back to the port after the WebSocket port."""
        return self.health_port if self.health_port is not None else self.port + 1


class DeepgramConfig(BaseModel):
    """Streaming speech-to-text (ASR) configuration."""

    api_key: str = Field(default="", description="Deepgram API key")
    url: str = Field(
        default="wss://api.deepgram.com/v1/listen",
        description="Live transcription endpoint",
    )
    model: str = Field(default="nova-3", description="ASR model identifier")
    smart_format: bool = Field(default=True, description="Enable smart formatting")
    keepalive_interval_s: float = Field(
        default=10.0,
        gt=0.0,
        description="Heartbeat interval while the stream is open",
    )

    def stream_options(self) -> dict[str, Any]:
        """Options passed to the ASR service when opening a stream."""
        return {"smart_format": self.smart_format, "model": self.model}


class OpenAIConfig(BaseModel):
    """Chat completion (LLM) configuration."""

    api_key: str = Field(default="", description="OpenAI API key")
    base_url: str | None = Field(default=None, description="Override API base URL")
    model: str = Field(default="gpt-3.5-turbo", description="Chat completion model")
    system_prompt: str = Field(
        default="You are a helpful assistant.",
        description="System prompt prepended to every request (never stored in history)",
    )
    timeout_s: float = Field(default=30.0, gt=0.0, description="Request timeout")


class VoiceSettings(BaseModel):
    """ElevenLabs voice tuning."""

    stability: float = Field(default=0.0, ge=0.0, le=1.0)
    similarity_boost: float = Field(default=1.0, ge=0.0, le=1.0)
    use_speaker_boost: bool = True
    speed: float = Field(default=1.0, gt=0.0)


class ElevenLabsConfig(BaseModel):
    """Text-to-speech (TTS) configuration."""

    api_key: str = Field(default="", description="ElevenLabs API key")
    base_url: str = Field(
        default="https://api.elevenlabs.io",
        description="ElevenLabs API base URL",
    )
    voice_id: str = Field(default="", description="Voice identifier")
    model_id: str = Field(default="eleven_flash_v2_5", description="Synthesis model")
    output_format: str = Field(default="mp3_44100_128", description="Audio output format")
    voice_settings: VoiceSettings = Field(default_factory=VoiceSettings)
    timeout_s: float = Field(default=30.0, gt=0.0, description="Request timeout")


class ReconnectConfig(BaseModel):
    """ASR reconnection policy (exponential backoff + circuit breaker)."""

    initial_backoff_s: float = Field(
        default=0.5,
        ge=0.0,
        description="Delay before the second consecutive reconnect attempt",
    )
    max_backoff_s: float = Field(default=10.0, ge=0.0, description="Backoff ceiling")
    multiplier: float = Field(default=2.0, ge=1.0, description="Backoff growth factor")
    max_consecutive_failures: int = Field(
        default=5,
        ge=1,
        description="Reconnect attempts without an opened stream before the session is closed",
    )

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> "ReconnectConfig":
        """Validate that the ceiling is not below the initial delay."""
        if self.max_backoff_s < self.initial_backoff_s:
            raise ValueError(
                f"max_backoff_s ({self.max_backoff_s}) must be >= "
                f"initial_backoff_s ({self.initial_backoff_s})"
            )
        return self

    def delay_for_attempt(self, attempt: int) -> float:
        """Backoff delay before the given consecutive attempt (1-based).

        The first attempt after a stream was open is immediate.
        """
        if attempt <= 1:
            return 0.0
        delay = self.initial_backoff_s * self.multiplier ** (attempt - 2)
        return min(delay, self.max_backoff_s)


class HistoryConfig(BaseModel):
    """Conversation history retention."""

    max_turns: int | None = Field(
        default=None,
        ge=1,
        description="Maximum stored turns; oldest are evicted first (None = unbounded)",
    )


class TurnConfig(BaseModel):
    """Turn-completion cycle scheduling."""

    ordering: Literal["interleave", "serialize"] = Field(
        default="interleave",
        description="interleave: overlapping cycles run concurrently; "
        "serialize: cycles run one at a time in transcript order",
    )


class RelayConfig(BaseModel):
    """Root relay configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    deepgram: DeepgramConfig = Field(default_factory=DeepgramConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    elevenlabs: ElevenLabsConfig = Field(default_factory=ElevenLabsConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    turns: TurnConfig = Field(default_factory=TurnConfig)

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    graceful_shutdown_timeout_s: int = Field(
        default=10,
        ge=1,
        description="Graceful shutdown timeout in seconds",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    def validate_credentials(self) -> None:
        """Check that every backend credential is present.

        Raises:
            ConfigurationError: Listing every missing setting
        """
        missing = []
        if not self.deepgram.api_key:
            missing.append("DEEPGRAM_API_KEY (deepgram.api_key)")
        if not self.openai.api_key:
            missing.append("OPENAI_API_KEY (openai.api_key)")
        if not self.elevenlabs.api_key:
            missing.append("ELEVENLABS_API_KEY (elevenlabs.api_key)")
        if not self.elevenlabs.voice_id:
            missing.append("VOICE_ID (elevenlabs.voice_id)")

        if missing:
            raise ConfigurationError(
                "Configuration validation failed, missing:\n"
                + "\n".join(f"  - {item}" for item in missing)
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RelayConfig":
        """Build configuration from a mapping with environment variable overrides.

        Args:
            data: Parsed configuration mapping (may be None or empty)

        Returns:
            Validated configuration
        """
        data = dict(data or {})

        overrides = {
            "DEEPGRAM_API_KEY": ("deepgram", "api_key"),
            "OPENAI_API_KEY": ("openai", "api_key"),
            "ELEVENLABS_API_KEY": ("elevenlabs", "api_key"),
            "VOICE_ID": ("elevenlabs", "voice_id"),
            "PORT": ("server", "port"),
        }
        for env_name, (section, key) in overrides.items():
            if value := os.getenv(env_name):
                section_data = dict(data.get(section) or {})
                section_data[key] = value
                data[section] = section_data

        if log_level := os.getenv("LOG_LEVEL"):
            data["log_level"] = log_level

        return cls.model_validate(data)

    @classmethod
    def from_yaml(cls, path: Path) -> "RelayConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "RelayConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Environment overrides apply in both cases.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.from_dict({})
