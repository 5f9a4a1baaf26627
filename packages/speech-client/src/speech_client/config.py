"""Configuration settings for the speech recognition client."""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthConfig(BaseSettings):
    """Token exchange settings."""

    model_config = SettingsConfigDict(env_prefix="SPEECH_AUTH_")

    token_url: str = Field(
        default="https://api.cognitive.microsoft.com/sts/v1.0/issueToken",
        description="Endpoint exchanging a subscription key for a bearer token",
    )
    timeout: float = Field(default=10.0, description="Token request timeout in seconds")
    token_ttl: float = Field(
        default=540.0,
        description="Seconds a cached token is reused before refreshing. "
        "Tokens are valid for 10 minutes; refresh a minute early.",
    )


class ServiceConfig(BaseSettings):
    """Recognition service endpoints and client identification."""

    model_config = SettingsConfigDict(env_prefix="SPEECH_SERVICE_")

    short_phrase_url: str = Field(
        default="wss://speech.platform.bing.com/api/service/recognition",
        description="Short phrase recognition endpoint",
    )
    long_dictation_url: str = Field(
        default="wss://speech.platform.bing.com/api/service/recognition/continuous",
        description="Long dictation recognition endpoint",
    )
    host: str = Field(default="speech.platform.bing.com", description="Host header value")
    log_level: str = Field(default="1", description="X-CU-LogLevel handshake header")
    client_version: str = Field(default="2.0.0", description="X-CU-ClientVersion frame header")
    user_agent: str = Field(
        default="SampleAppService (Windows;1607;Desktop;ProcessName/AppName=SampleApp/1.0.0;DeviceType=Near)",
        description="User-Agent carrying device and application metadata",
    )
    network_type: str = Field(default="Ethernet", description="Network type reported in the context frame")


class AudioConfig(BaseSettings):
    """Audio streaming settings."""

    model_config = SettingsConfigDict(env_prefix="SPEECH_AUDIO_")

    chunk_size: int = Field(default=1024, gt=0, description="Maximum audio bytes per frame")


class SessionConfig(BaseSettings):
    """Recognition session timing and retry settings."""

    model_config = SettingsConfigDict(env_prefix="SPEECH_SESSION_")

    connect_timeout: float = Field(default=10.0, description="WebSocket handshake timeout in seconds")
    connect_attempts: int = Field(default=3, ge=1, description="Max connection attempts")
    reconnect_delay: float = Field(default=1.0, description="Initial reconnect delay in seconds")
    require_ack: bool = Field(
        default=False,
        description="Wait for a first server message after the context frame before streaming audio",
    )
    ack_timeout: float = Field(default=10.0, description="Max seconds to wait for the server ack")
    final_timeout: float = Field(default=30.0, description="Max seconds to wait for the final result")
    max_message_size: int = Field(default=10 * 1024 * 1024, description="Max inbound message size in bytes")


class RecognitionMode(str, Enum):
    """Recognition mode, selecting one of the two service endpoints."""

    SHORT = "short"
    LONG = "long"

    @classmethod
    def parse(cls, value: str) -> "RecognitionMode":
        """Parse a mode name case-insensitively.

        Raises:
            ValueError: If the name is neither "short" nor "long".
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Invalid recognition mode: {value!r} (expected 'short' or 'long')") from None

    def endpoint(self, service: ServiceConfig) -> str:
        """WebSocket URL for this mode."""
        if self is RecognitionMode.LONG:
            return service.long_dictation_url
        return service.short_phrase_url


class Settings(BaseSettings):
    """Combined settings for the speech client."""

    auth: AuthConfig = Field(default_factory=AuthConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)


# Global settings instance
settings = Settings()
