"""Application configuration using pydantic-settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase
    supabase_url: str
    supabase_key: str
    supabase_service_key: str

    # AI provider defaults (overridable at runtime through system_config)
    ai_provider: str = "gemini"
    ai_model: Optional[str] = None  # Falls back to the provider's first catalogue model

    # Provider API keys (env fallback when system_config has no value)
    gemini_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    deepseek_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    lovable_api_key: Optional[str] = None

    # Provider calls
    ai_max_retries: int = Field(default=3, ge=1)
    ai_retry_base_delay: float = Field(default=5.0, ge=0.0)  # seconds, multiplied by attempt number
    ai_request_timeout: float = 300.0
    ai_max_output_tokens: int = 8192
    ai_temperature: float = 0.2

    # Chunking (the two historical deployments used 50 and 10,000)
    analysis_chunk_size: int = Field(default=50, gt=0)
    max_parallel_chunks: int = Field(default=3, ge=1)

    # Size limits
    prompt_max_data_chars: int = Field(default=8000, gt=0)
    max_category_data_chars: int = Field(default=500_000, gt=0)
    max_field_length: int = Field(default=500, gt=0)

    # Sampling caps for oversized categories
    user_priority_cap: int = 4500
    user_normal_cap: int = 500
    gpo_priority_cap: int = 300
    gpo_normal_cap: int = 200

    # Pause between categories to stay under provider rate limits
    category_delay_seconds: float = Field(default=0.0, ge=0.0)

    # Logging
    log_level: str = "INFO"

    # CORS
    cors_origins: str = "http://localhost:5173"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings for testing."""
    global _settings
    _settings = None
