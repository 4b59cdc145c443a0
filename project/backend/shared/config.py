"""
Configuration management.

Centralized environment variable management and validation.
"""

from typing import Literal, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from shared.errors import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # Allow case-insensitive env var matching
        extra="ignore"
    )

    # Supabase configuration
    supabase_url: str
    supabase_service_key: str

    # Redis configuration
    redis_url: str

    # API keys
    openai_api_key: str
    elevenlabs_api_key: str

    # Speech synthesis
    elevenlabs_voice_id: str = "EFbNMe9bCQ0gsl51ZIWn"
    elevenlabs_model_id: str = "eleven_multilingual_v2"
    openai_tts_model: str = "tts-1"
    openai_tts_voice: str = "alloy"

    # Image synthesis
    image_model: str = "dall-e-3"
    image_size: str = "1024x1792"  # Vertical format
    fallback_image_model: str = "dall-e-2"
    fallback_image_size: str = "1024x1024"
    placeholder_image_path: Optional[str] = None

    # Provider timeouts (seconds)
    image_provider_timeout: float = 60.0
    speech_provider_timeout: float = 60.0
    download_timeout: float = 30.0

    # Asset generation
    image_concurrency: int = 3

    # Rendering
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    encoder_timeout: float = 300.0
    render_width: int = 1080
    render_height: int = 1920
    render_fps: int = 30
    kenburns_max_zoom: float = 1.12
    renders_dir: str = "renders"
    keep_local_copy: bool = True

    # Storage buckets
    assets_bucket: str = "renders-assets"
    videos_bucket: str = "videos"

    # Locks and caching (seconds)
    stage_lock_ttl: int = 900
    status_cache_ttl: int = 30

    # Frontend configuration
    frontend_url: str = "http://localhost:3000"  # Frontend domain for CORS

    # Environment
    environment: Literal["development", "staging", "production", "test"] = "development"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate Supabase URL format."""
        if not v:
            raise ConfigError("SUPABASE_URL is required")
        if not v.startswith(("http://", "https://")):
            raise ConfigError("SUPABASE_URL must be a valid HTTP/HTTPS URL")
        return v

    @field_validator("supabase_service_key")
    @classmethod
    def validate_supabase_service_key(cls, v: str) -> str:
        """Validate Supabase service key format."""
        if not v:
            raise ConfigError("SUPABASE_SERVICE_KEY is required")
        if len(v) < 50:  # Basic format check
            raise ConfigError("SUPABASE_SERVICE_KEY appears to be invalid")
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v:
            raise ConfigError("REDIS_URL is required")
        if not v.startswith(("redis://", "rediss://")):
            raise ConfigError("REDIS_URL must start with redis:// or rediss://")
        return v

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_api_key(cls, v: str) -> str:
        """Validate OpenAI API key format."""
        if not v:
            raise ConfigError("OPENAI_API_KEY is required")
        if not v.startswith("sk-"):
            raise ConfigError("OPENAI_API_KEY must start with 'sk-'")
        if len(v) < 20:
            raise ConfigError("OPENAI_API_KEY appears to be invalid")
        return v

    @field_validator("elevenlabs_api_key")
    @classmethod
    def validate_elevenlabs_api_key(cls, v: str) -> str:
        """Validate ElevenLabs API key format."""
        if not v:
            raise ConfigError("ELEVENLABS_API_KEY is required")
        if len(v) < 20:
            raise ConfigError("ELEVENLABS_API_KEY appears to be invalid")
        return v

    @field_validator("image_concurrency")
    @classmethod
    def validate_image_concurrency(cls, v: int) -> int:
        """Validate image worker limit."""
        if v < 1:
            raise ConfigError("IMAGE_CONCURRENCY must be at least 1")
        return v

    @field_validator("kenburns_max_zoom")
    @classmethod
    def validate_kenburns_max_zoom(cls, v: float) -> float:
        """Keep zoom motion subtle enough to avoid visible judder."""
        if v < 1.0 or v > 1.3:
            raise ConfigError("KENBURNS_MAX_ZOOM must be between 1.0 and 1.3")
        return v

    @field_validator("image_provider_timeout", "speech_provider_timeout", "encoder_timeout")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        """Timeouts must be positive."""
        if v <= 0:
            raise ConfigError("Timeouts must be positive")
        return v


# Singleton instance
try:
    settings = Settings()
except Exception as e:
    # Re-raise as ConfigError for consistency
    if isinstance(e, ConfigError):
        raise
    raise ConfigError(f"Failed to load configuration: {str(e)}") from e
