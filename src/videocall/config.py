"""Configuration schema for the call core.

Defines Pydantic models for loading and validating configuration from YAML
files and environment variables.
"""

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator


class LiveKitConfig(BaseModel):
    """LiveKit engine connection configuration."""

    url: str = Field(
        default="ws://localhost:7880",
        description="LiveKit server URL used by clients to join rooms",
    )
    api_key: str = Field(default="devkey", description="LiveKit API key")
    api_secret: str = Field(default="secret", description="LiveKit API secret")


class TokenServiceConfig(BaseModel):
    """Credential endpoint configuration (both serving and fetching)."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8080, ge=1024, le=65535, description="Bind port")
    base_url: str = Field(
        default="http://localhost:8080",
        description="Base URL clients use to reach the token endpoint",
    )
    request_timeout_s: float = Field(
        default=10.0, gt=0, description="Timeout for a single token request"
    )


class MediaConfig(BaseModel):
    """Local capture configuration.

    Video defaults follow the 720p / 15 fps / 1130 kbps encoder profile.
    """

    audio_sample_rate: int = Field(default=48000, description="Capture sample rate in Hz")
    audio_channels: int = Field(default=1, ge=1, le=2, description="Capture channel count")
    video_width: int = Field(default=1280, ge=16, description="Capture width in pixels")
    video_height: int = Field(default=720, ge=16, description="Capture height in pixels")
    video_fps: int = Field(default=15, ge=1, le=60, description="Capture frame rate")
    video_max_bitrate: int = Field(
        default=1_130_000, ge=100_000, description="Published video bitrate cap (bps)"
    )
    camera_index: int = Field(default=0, ge=0, description="OpenCV camera index to capture")
    max_camera_index: int = Field(
        default=4, ge=1, description="Number of OpenCV indices probed for cameras"
    )

    @field_validator("audio_sample_rate")
    @classmethod
    def validate_sample_rate(cls, v: int) -> int:
        """Validate that sample rate is one the engine accepts."""
        valid_rates = [16000, 24000, 32000, 44100, 48000]
        if v not in valid_rates:
            raise ValueError(f"audio_sample_rate must be one of {valid_rates}, got {v}")
        return v


class RetryConfig(BaseModel):
    """Track creation retry policy."""

    max_attempts: int = Field(default=2, ge=1, description="Attempts per track")
    strategy: str = Field(default="constant", description="Backoff strategy: constant, exponential")
    delay_s: float = Field(default=1.0, ge=0, description="Delay between attempts (initial delay)")
    multiplier: float = Field(default=2.0, ge=1.0, description="Exponential growth factor")
    max_delay_s: float = Field(default=30.0, ge=0, description="Upper bound on any single delay")

    @field_validator("strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        """Validate that the backoff strategy is known."""
        valid_strategies = ["constant", "exponential"]
        if v not in valid_strategies:
            raise ValueError(f"retry strategy must be one of {valid_strategies}, got '{v}'")
        return v


class SessionConfig(BaseModel):
    """Session timing limits."""

    join_timeout_s: float = Field(default=15.0, gt=0, description="Room join timeout")
    subscribe_timeout_s: float = Field(
        default=10.0, gt=0, description="Timeout waiting for a remote track subscription"
    )


class CallConfig(BaseModel):
    """Root configuration."""

    livekit: LiveKitConfig = Field(default_factory=LiveKitConfig)
    token_service: TokenServiceConfig = Field(default_factory=TokenServiceConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize the log level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "CallConfig":
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
            data = yaml.safe_load(f) or {}

        return cls.model_validate(apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "CallConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Environment overrides apply in both cases.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.model_validate(apply_env_overrides({}))


def apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay LIVEKIT_* and TOKEN_SERVICE_URL environment variables onto raw config data."""
    if livekit_url := os.getenv("LIVEKIT_URL"):
        data.setdefault("livekit", {})["url"] = livekit_url

    if livekit_api_key := os.getenv("LIVEKIT_API_KEY"):
        data.setdefault("livekit", {})["api_key"] = livekit_api_key

    if livekit_api_secret := os.getenv("LIVEKIT_API_SECRET"):
        data.setdefault("livekit", {})["api_secret"] = livekit_api_secret

    if token_url := os.getenv("TOKEN_SERVICE_URL"):
        data.setdefault("token_service", {})["base_url"] = token_url

    return data
