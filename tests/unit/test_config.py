"""Unit tests for relay configuration.

Tests configuration loading, validation, defaults and environment overrides.
"""

from pathlib import Path

import pytest

from voicerelay.config import (
    DeepgramConfig,
    ElevenLabsConfig,
    HistoryConfig,
    ReconnectConfig,
    RelayConfig,
    ServerConfig,
    TurnConfig,
)
from voicerelay.errors import ConfigurationError

ENV_VARS = (
    "DEEPGRAM_API_KEY",
    "OPENAI_API_KEY",
    "ELEVENLABS_API_KEY",
    "VOICE_ID",
    "PORT",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate tests from credentials in the developer environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_server_config_defaults() -> None:
    """Test server configuration defaults."""
    config = ServerConfig()
    assert config.port == 8080
    assert config.health_port is None
    assert config.resolved_health_port == 8081


def test_server_config_explicit_health_port() -> None:
    config = ServerConfig(port=9000, health_port=9100)
    assert config.resolved_health_port == 9100


def test_server_config_port_validation() -> None:
    """Test port bounds."""
    with pytest.raises(ValueError):
        ServerConfig(port=0)

    with pytest.raises(ValueError):
        ServerConfig(port=70000)


def test_deepgram_stream_options() -> None:
    """Test options passed to the ASR service."""
    config = DeepgramConfig()
    assert config.model == "nova-3"
    assert config.keepalive_interval_s == 10.0
    assert config.stream_options() == {"smart_format": True, "model": "nova-3"}


def test_elevenlabs_defaults() -> None:
    """Test synthesis defaults."""
    config = ElevenLabsConfig()
    assert config.model_id == "eleven_flash_v2_5"
    assert config.output_format == "mp3_44100_128"
    assert config.voice_settings.stability == 0.0
    assert config.voice_settings.similarity_boost == 1.0
    assert config.voice_settings.use_speaker_boost is True
    assert config.voice_settings.speed == 1.0


class TestReconnectConfig:
    """Test backoff schedule and validation."""

    def test_first_attempt_is_immediate(self) -> None:
        config = ReconnectConfig(initial_backoff_s=0.5, multiplier=2.0, max_backoff_s=10.0)
        assert config.delay_for_attempt(1) == 0.0

    def test_exponential_growth(self) -> None:
        config = ReconnectConfig(initial_backoff_s=0.5, multiplier=2.0, max_backoff_s=10.0)
        assert config.delay_for_attempt(2) == 0.5
        assert config.delay_for_attempt(3) == 1.0
        assert config.delay_for_attempt(4) == 2.0

    def test_delay_is_capped(self) -> None:
        config = ReconnectConfig(initial_backoff_s=1.0, multiplier=3.0, max_backoff_s=5.0)
        assert config.delay_for_attempt(10) == 5.0

    def test_max_below_initial_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_backoff_s"):
            ReconnectConfig(initial_backoff_s=5.0, max_backoff_s=1.0)

    def test_failure_threshold_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ReconnectConfig(max_consecutive_failures=0)


def test_history_and_turn_defaults() -> None:
    assert HistoryConfig().max_turns is None
    assert TurnConfig().ordering == "interleave"

    with pytest.raises(ValueError):
        HistoryConfig(max_turns=0)

    with pytest.raises(ValueError):
        TurnConfig(ordering="random")  # type: ignore[arg-type]


def test_log_level_normalized() -> None:
    """Test log level validation."""
    assert RelayConfig(log_level="debug").log_level == "DEBUG"

    with pytest.raises(ValueError, match="log_level"):
        RelayConfig(log_level="verbose")


def test_validate_credentials_lists_everything_missing() -> None:
    """Test that all missing credentials are reported at once."""
    config = RelayConfig()

    with pytest.raises(ConfigurationError) as exc_info:
        config.validate_credentials()

    message = str(exc_info.value)
    for name in ("DEEPGRAM_API_KEY", "OPENAI_API_KEY", "ELEVENLABS_API_KEY", "VOICE_ID"):
        assert name in message


def test_validate_credentials_passes_with_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test environment overrides satisfy credential validation."""
    monkeypatch.setenv("DEEPGRAM_API_KEY", "dg")
    monkeypatch.setenv("OPENAI_API_KEY", "oa")
    monkeypatch.setenv("ELEVENLABS_API_KEY", "el")
    monkeypatch.setenv("VOICE_ID", "voice-1")
    monkeypatch.setenv("PORT", "9090")

    config = RelayConfig.from_dict({})
    config.validate_credentials()

    assert config.deepgram.api_key == "dg"
    assert config.openai.api_key == "oa"
    assert config.elevenlabs.api_key == "el"
    assert config.elevenlabs.voice_id == "voice-1"
    assert config.server.port == 9090


def test_env_overrides_take_precedence_over_file(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "from-env")

    config = RelayConfig.from_dict({"openai": {"api_key": "from-file", "model": "gpt-4o"}})

    assert config.openai.api_key == "from-env"
    assert config.openai.model == "gpt-4o"


def test_from_yaml(tmp_path: Path) -> None:
    """Test loading configuration from a YAML file."""
    config_file = tmp_path / "relay.yaml"
    config_file.write_text(
        "server:\n"
        "  port: 9000\n"
        "reconnect:\n"
        "  max_consecutive_failures: 3\n"
        "history:\n"
        "  max_turns: 20\n"
        "turns:\n"
        "  ordering: serialize\n"
    )

    config = RelayConfig.from_yaml(config_file)

    assert config.server.port == 9000
    assert config.reconnect.max_consecutive_failures == 3
    assert config.history.max_turns == 20
    assert config.turns.ordering == "serialize"


def test_from_yaml_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        RelayConfig.from_yaml(tmp_path / "missing.yaml")


def test_from_yaml_with_defaults_missing_file(tmp_path: Path) -> None:
    """Test fallback to defaults when the file does not exist."""
    config = RelayConfig.from_yaml_with_defaults(tmp_path / "missing.yaml")
    assert config.server.port == 8080
    assert config.turns.ordering == "interleave"


def test_shipped_config_loads() -> None:
    """Test the bundled configs/relay.yaml is valid."""
    path = Path(__file__).parent.parent.parent / "configs" / "relay.yaml"
    config = RelayConfig.from_yaml(path)
    assert config.deepgram.model == "nova-3"
    assert config.openai.system_prompt == "You are a helpful assistant."
