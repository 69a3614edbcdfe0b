"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
Matching thresholds and pipeline limits live here so they can be
tuned per deployment without touching the matching code.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: Optional[str] = Field(
        None,
        description="Supabase project URL"
    )
    supabase_key: Optional[str] = Field(
        None,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )

    # ===================
    # STORAGE
    # ===================
    storage_bucket: str = Field(
        default="product-images",
        min_length=1,
        description="Object store bucket for uploaded product images"
    )
    products_table: str = Field(
        default="products",
        min_length=1,
        description="Catalog table that receives committed products"
    )

    # ===================
    # TELEGRAM
    # ===================
    telegram_bot_token: Optional[str] = Field(
        None,
        description="Telegram bot token from @BotFather"
    )
    telegram_chat_id: Optional[str] = Field(
        None,
        description="Telegram chat ID for upload summaries"
    )

    # ===================
    # PIPELINE
    # ===================
    upload_concurrency_limit: int = Field(
        default=3,
        ge=1,
        le=32,
        description="Maximum image uploads in flight at once"
    )
    persist_chunk_size: int = Field(
        default=500,
        ge=1,
        le=5000,
        description="Rows per catalog insert request"
    )
    duplicate_lookup_chunk_size: int = Field(
        default=200,
        ge=1,
        le=1000,
        description="SKUs per duplicate lookup query"
    )

    # ===================
    # MATCHING POLICY
    # ===================
    match_fuzzy_floor: int = Field(
        default=50,
        ge=0,
        le=100,
        description="Minimum similarity score for a fuzzy match"
    )
    match_contains_min_score: int = Field(
        default=80,
        ge=0,
        le=99,
        description="Score given to the weakest containment match"
    )
    match_contains_max_score: int = Field(
        default=99,
        ge=0,
        le=99,
        description="Score given to a full-length containment match"
    )
    match_min_contains_length: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Shortest string allowed to count as contained"
    )
    match_confidence_high: int = Field(
        default=90,
        ge=0,
        le=100,
        description="Score at or above which a match is high confidence"
    )
    match_confidence_medium: int = Field(
        default=70,
        ge=0,
        le=100,
        description="Score at or above which a match is medium confidence"
    )

    # ===================
    # INTAKE LIMITS
    # ===================
    max_image_bytes: int = Field(
        default=5_000_000,
        ge=1,
        description="Largest accepted image file in bytes"
    )
    max_images_per_upload: int = Field(
        default=500,
        ge=1,
        description="Most images accepted in a single run"
    )
    max_feed_rows: int = Field(
        default=1000,
        ge=1,
        description="Most product rows accepted in a single feed"
    )
    max_feed_bytes: int = Field(
        default=10_000_000,
        ge=1,
        description="Largest accepted feed file in bytes"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Browser origins allowed to call the API (JSON list in env)"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def supabase_configured(self) -> bool:
        """Check if Supabase credentials are present."""
        return bool(self.supabase_url and self.supabase_key)

    @property
    def telegram_configured(self) -> bool:
        """Check if Telegram is properly configured."""
        return bool(self.telegram_bot_token and self.telegram_chat_id)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If env vars are invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
