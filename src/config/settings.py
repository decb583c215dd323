"""Application Settings - Environment-based configuration.

Uses Pydantic Settings for validation and type coercion.

Required variables fail startup if missing. Outside development a missing
Gemini API key fails at load time. In development it is checked when the
gemini transport is built, so local UI work needs VOICE_TRANSPORT=mock
to boot without a key.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.config.constants import DEFAULT_SYSTEM_INSTRUCTION, VOICE


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_host: str = Field(default="127.0.0.1", description="API bind host")
    api_port: int = Field(default=8081, ge=1024, le=65535, description="API port")
    log_level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment name"
    )

    # Backends
    voice_transport: Literal["gemini", "mock"] = Field(
        default="gemini",
        description="Streaming voice transport (mock for tests and offline UI work)",
    )
    audio_backend: Literal["sounddevice", "memory"] = Field(
        default="sounddevice",
        description="Platform audio backend (memory for headless runs)",
    )

    # Streaming voice API
    gemini_api_key: str | None = Field(
        default=None,
        description="Gemini API key (required outside development)",
    )
    live_model: str = Field(
        default="gemini-2.5-flash-native-audio-preview-09-2025",
        description="Model used for the live voice session",
    )
    system_instruction: str = Field(
        default=DEFAULT_SYSTEM_INSTRUCTION,
        description="Persona / system instruction sent when the session opens",
    )

    # Greeting
    greeting_enabled: bool = Field(default=True, description="Play a canned greeting")
    greeting_delay_s: float = Field(
        default=VOICE.GREETING_DELAY_S,
        gt=0,
        le=60,
        description="Quiet period before the greeting plays",
    )
    tts_model: str = Field(
        default="gemini-2.5-flash-preview-tts",
        description="Model used to synthesize the greeting",
    )
    tts_voice: str = Field(default="Kore", description="Prebuilt voice for the greeting")

    # Audio
    capture_sample_rate: int = Field(
        default=VOICE.CAPTURE_SAMPLE_RATE,
        description="Microphone sample rate (must match the transport mime type)",
    )
    capture_block_size: int = Field(
        default=VOICE.CAPTURE_BLOCK_SIZE,
        ge=256,
        le=16384,
        description="Samples per capture block",
    )
    playback_sample_rate: int = Field(
        default=VOICE.PLAYBACK_SAMPLE_RATE,
        description="Playback sample rate of streamed AI audio",
    )
    pcm_clamp: bool = Field(
        default=True,
        description="Clamp samples to [-1, 1] before 16-bit quantization",
    )
    speaker_on: bool = Field(default=True, description="Start with the speaker enabled")
    input_device: str | None = Field(default=None, description="Input device name or index")
    output_device: str | None = Field(default=None, description="Output device name or index")

    # Observability
    metrics_enabled: bool = Field(default=True, description="Enable Prometheus metrics")
    log_json: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("capture_sample_rate", "playback_sample_rate")
    @classmethod
    def validate_sample_rate(cls, v: int) -> int:
        """Only the rates the streaming API speaks are accepted."""
        if v not in (16000, 24000):
            raise ValueError(f"Unsupported sample rate: {v}")
        return v

    def model_post_init(self, __context) -> None:
        """Validate conditional requirements after initialization."""
        if self.environment == "production" and not self.gemini_api_key:
            raise ValueError("gemini_api_key is required in production environment")

        if self.environment == "production" and self.voice_transport == "mock":
            raise ValueError("voice_transport=mock is not allowed in production")

    @property
    def capture_mime_type(self) -> str:
        """Mime type announced with each uploaded frame."""
        return f"audio/pcm;rate={self.capture_sample_rate}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
