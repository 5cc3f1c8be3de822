"""
Configuration settings for the lernzeit content selection engine.

Uses Pydantic Settings for environment variable management with .env file support.
All variables carry the LERNZEIT_ prefix, e.g. LERNZEIT_SUPABASE_URL.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LERNZEIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Supabase
    # ========================================
    supabase_url: str = Field(
        default="",
        description="Supabase project URL (https://<project>.supabase.co)",
    )
    supabase_key: str = Field(
        default="",
        description="Supabase API key (anon or service role)",
    )
    supabase_timeout: float = Field(
        default=10.0,
        ge=0.5,
        description="HTTP timeout for Supabase requests in seconds",
    )

    # ========================================
    # Sessions
    # ========================================
    session_timeout_minutes: int = Field(
        default=30,
        ge=1,
        description="Inactivity after which a learner session is evicted",
    )

    # ========================================
    # Template rotation
    # ========================================
    min_template_quality: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Templates below this stored quality are never selected",
    )
    archive_max_quality: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Pool rotation archives templates below this quality...",
    )
    archive_min_plays: int = Field(
        default=10,
        ge=0,
        description="...that were played more often than this...",
    )
    archive_max_success_rate: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="...and are solved correctly less often than this",
    )
    pool_min_active: int = Field(
        default=30,
        ge=0,
        description="Warn when fewer active templates remain after rotation",
    )

    # ========================================
    # Quality evaluation
    # ========================================
    quality_batch_size: int = Field(
        default=3,
        ge=1,
        description="Questions evaluated per batch chunk",
    )
    quality_batch_pause: float = Field(
        default=0.1,
        ge=0.0,
        description="Pause between batch chunks in seconds",
    )

    # ========================================
    # Randomness
    # ========================================
    random_seed: int | None = Field(
        default=None,
        description="Seed for plateau nudges and optimizer resampling (unset = nondeterministic)",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional rotating log file path",
    )

    # ========================================
    # Helpers
    # ========================================
    def has_supabase_config(self) -> bool:
        """Check if the Supabase store is configured."""
        return bool(self.supabase_url and self.supabase_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
