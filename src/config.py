"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables.
See .env.example for required variables.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ==========================================================================
    # API Keys
    # ==========================================================================
    openai_api_key: SecretStr = Field(
        description="OpenAI API key for the realtime and vision models"
    )

    # ==========================================================================
    # Service Wiring
    # ==========================================================================
    incident_base_url: str = Field(
        default="http://localhost:4001",
        description="Base URL of the incident service (timeline events)",
    )
    realtime_url: str = Field(
        default="wss://api.openai.com/v1/realtime",
        description="Upstream realtime conversation endpoint",
    )
    realtime_model: str = Field(
        default="gpt-4o-realtime-preview-2024-10-01",
        description="Upstream realtime conversation model",
    )
    realtime_voice: str = Field(default="alloy", description="Synthesized voice name")
    vision_model: str = Field(default="gpt-4o", description="Model for image analysis")
    gateway_port: int = Field(default=4010, description="Port the gateway listens on")

    # ==========================================================================
    # Audio Buffering
    # ==========================================================================
    default_sample_rate: int = Field(
        default=24000,
        description="Sample rate assumed until the client hello negotiates one",
    )
    output_sample_rate: int = Field(
        default=24000,
        description="Rate of the pcm16 audio the upstream model produces",
    )
    bytes_per_sample: int = Field(default=2, description="PCM16 mono")
    commit_window_ms: int = Field(
        default=200,
        description="Audio duration that forces an immediate commit",
    )
    flush_window_ms: int = Field(
        default=100,
        description="Minimum audio duration committed by the flush timer",
    )
    flush_delay_ms: int = Field(
        default=250,
        description="Idle delay before the flush timer commits a short utterance",
    )
    min_audio_frame_bytes: int = Field(
        default=200,
        description="Binary frames smaller than this are discarded",
    )
    pre_upstream_max_bytes: int = Field(
        default=256_000,
        description="Cap on audio held while the upstream link negotiates",
    )

    # ==========================================================================
    # Turn Taking
    # ==========================================================================
    response_debounce_ms: int = Field(
        default=50,
        description="Delay that lets commit and response requests coalesce",
    )
    agent_trigger_delay_seconds: float = Field(
        default=3.0,
        description="Debounce before the decision-making agent is triggered",
    )
    echo_grace_ms: int = Field(
        default=800,
        description="Inbound transcripts this close to synthesized speech are dropped",
    )
    speaking_grace_ms: int = Field(
        default=500,
        description="Playback tail after a response completes",
    )
    echo_tail_ms: int = Field(
        default=1500,
        description="How long after playback recent utterances still count as echo",
    )
    recent_utterance_capacity: int = Field(
        default=5,
        description="Number of synthesized transcripts remembered for echo matching",
    )
    conversation_history_limit: int = Field(
        default=20,
        description="Turns kept as context for image analysis",
    )
    vision_history_turns: int = Field(
        default=5,
        description="Turns sent along with an image analysis request",
    )

    # ==========================================================================
    # Incident Timeline
    # ==========================================================================
    timeline_timeout_seconds: float = Field(
        default=5.0,
        description="HTTP timeout for timeline event publication",
    )
    timeline_max_concurrency: int = Field(
        default=4,
        description="Concurrent timeline POSTs per session",
    )
    timeline_max_pending: int = Field(
        default=64,
        description="Timeline events queued per session before new ones are dropped",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    max_concurrent_sessions: int = Field(
        default=50,
        description="Caller sessions accepted before new connections are refused",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # ==========================================================================
    # Derived Properties
    # ==========================================================================
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def realtime_endpoint(self) -> str:
        """Full upstream URL including the model query parameter."""
        return f"{self.realtime_url}?model={self.realtime_model}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Use dependency injection in FastAPI:
        settings: Settings = Depends(get_settings)
    """
    return Settings()  # type: ignore[call-arg]  # loads from env
