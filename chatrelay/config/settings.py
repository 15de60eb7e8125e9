"""Application settings using Pydantic BaseSettings."""

import secrets
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    environment: str = Field(default="development")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)

    # Security
    secret_key: str = Field(default_factory=lambda: secrets.token_urlsafe(64))
    cors_origins: str = Field(default="http://localhost:3000")
    max_request_bytes: int = Field(default=1048576)

    # Sessions (identity is issued by an external collaborator; the relay
    # only verifies the signed cookie)
    session_cookie_name: str = Field(default="relay_session")
    session_ttl_seconds: int = Field(default=604800)
    cookie_secure: bool = Field(default=True)

    # Providers
    providers_enabled: str = Field(default="openrouter,groq")
    provider_timeout_seconds: int = Field(default=60)
    default_max_tokens: int = Field(default=1000)
    default_temperature: float = Field(default=0.7)
    sse_ping_interval_seconds: int = Field(default=10)

    # OpenRouter
    openrouter_api_key: str = Field(default="")
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1")
    openrouter_referer: str = Field(default="http://localhost:3000")
    openrouter_title: str = Field(default="Chat Relay")

    # Groq
    groq_api_key: str = Field(default="")
    groq_base_url: str = Field(default="https://api.groq.com/openai/v1")

    # Guests
    guest_max_content_bytes: int = Field(default=16384)

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def providers_enabled_list(self) -> List[str]:
        """Parse enabled providers from comma-separated string."""
        if not self.providers_enabled:
            return []
        return [p.strip() for p in self.providers_enabled.split(",") if p.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() == "production"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"development", "staging", "production"}:
            raise ValueError("ENVIRONMENT must be one of: development, staging, production")
        return vv

    @field_validator("guest_max_content_bytes", "default_max_tokens")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
