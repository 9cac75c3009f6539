"""Unit tests for call configuration.

Tests configuration loading, validation, defaults, and environment overrides.
"""

from pathlib import Path

import pytest

from videocall.config import (
    CallConfig,
    LiveKitConfig,
    MediaConfig,
    RetryConfig,
    SessionConfig,
    TokenServiceConfig,
)


def test_livekit_config_defaults() -> None:
    """Test LiveKit configuration defaults."""
    config = LiveKitConfig()
    assert config.url == "ws://localhost:7880"
    assert config.api_key == "devkey"
    assert config.api_secret == "secret"


def test_token_service_config_validation() -> None:
    """Test token service port validation."""
    assert TokenServiceConfig(port=9000).port == 9000

    with pytest.raises(ValueError):
        TokenServiceConfig(port=80)

    with pytest.raises(ValueError):
        TokenServiceConfig(port=70000)


def test_media_config_defaults() -> None:
    """Test media defaults match the 720p/15fps profile."""
    config = MediaConfig()
    assert config.video_width == 1280
    assert config.video_height == 720
    assert config.video_fps == 15
    assert config.video_max_bitrate == 1_130_000
    assert config.audio_sample_rate == 48000


def test_media_config_sample_rate_validation() -> None:
    """Test that unsupported sample rates are rejected."""
    assert MediaConfig(audio_sample_rate=16000).audio_sample_rate == 16000

    with pytest.raises(ValueError, match="audio_sample_rate"):
        MediaConfig(audio_sample_rate=22050)


def test_retry_config_defaults() -> None:
    """Test retry policy defaults: two attempts, constant one second delay."""
    config = RetryConfig()
    assert config.max_attempts == 2
    assert config.strategy == "constant"
    assert config.delay_s == 1.0


def test_retry_config_validation() -> None:
    """Test retry policy validation."""
    assert RetryConfig(strategy="exponential").strategy == "exponential"

    with pytest.raises(ValueError):
        RetryConfig(strategy="fibonacci")

    with pytest.raises(ValueError):
        RetryConfig(max_attempts=0)


def test_session_config_defaults() -> None:
    """Test session timeout defaults."""
    config = SessionConfig()
    assert config.join_timeout_s == 15.0
    assert config.subscribe_timeout_s == 10.0


def test_call_config_log_level_normalized() -> None:
    """Test log level is uppercased and validated."""
    assert CallConfig(log_level="debug").log_level == "DEBUG"

    with pytest.raises(ValueError):
        CallConfig(log_level="verbose")


def test_from_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test loading configuration from a YAML file."""
    for name in ("LIVEKIT_URL", "LIVEKIT_API_KEY", "LIVEKIT_API_SECRET", "TOKEN_SERVICE_URL"):
        monkeypatch.delenv(name, raising=False)

    path = tmp_path / "call.yaml"
    path.write_text(
        "livekit:\n"
        "  url: ws://livekit.example:7880\n"
        "retry:\n"
        "  max_attempts: 3\n"
        "  strategy: exponential\n"
        "log_level: warning\n",
        encoding="utf-8",
    )

    config = CallConfig.from_yaml(path)
    assert config.livekit.url == "ws://livekit.example:7880"
    assert config.retry.max_attempts == 3
    assert config.retry.strategy == "exponential"
    assert config.log_level == "WARNING"
    assert config.media.video_fps == 15


def test_from_yaml_missing_file(tmp_path: Path) -> None:
    """Test that a missing file raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        CallConfig.from_yaml(tmp_path / "missing.yaml")


def test_from_yaml_with_defaults_no_file(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test defaults are used when no file is given."""
    for name in ("LIVEKIT_URL", "LIVEKIT_API_KEY", "LIVEKIT_API_SECRET", "TOKEN_SERVICE_URL"):
        monkeypatch.delenv(name, raising=False)

    config = CallConfig.from_yaml_with_defaults(None)
    assert config == CallConfig()


def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test environment variables take precedence over the file."""
    monkeypatch.setenv("LIVEKIT_URL", "wss://prod.example")
    monkeypatch.setenv("LIVEKIT_API_KEY", "prod-key")
    monkeypatch.setenv("LIVEKIT_API_SECRET", "prod-secret")
    monkeypatch.setenv("TOKEN_SERVICE_URL", "https://tokens.example")

    path = tmp_path / "call.yaml"
    path.write_text("livekit:\n  url: ws://local:7880\n", encoding="utf-8")

    config = CallConfig.from_yaml(path)
    assert config.livekit.url == "wss://prod.example"
    assert config.livekit.api_key == "prod-key"
    assert config.livekit.api_secret == "prod-secret"
    assert config.token_service.base_url == "https://tokens.example"

    defaults = CallConfig.from_yaml_with_defaults(tmp_path / "absent.yaml")
    assert defaults.livekit.url == "wss://prod.example"


def test_shipped_config_matches_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test configs/videocall.yaml loads and mirrors the built-in defaults."""
    for name in ("LIVEKIT_URL", "LIVEKIT_API_KEY", "LIVEKIT_API_SECRET", "TOKEN_SERVICE_URL"):
        monkeypatch.delenv(name, raising=False)

    path = Path(__file__).resolve().parents[2] / "configs" / "videocall.yaml"

    assert CallConfig.from_yaml(path) == CallConfig()
