"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./settlement.db",
        description="Async SQLAlchemy connection URL",
    )
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")
    database_busy_timeout_seconds: float = Field(
        default=30.0, description="SQLite busy timeout while waiting for the write lock"
    )

    # Locking
    lock_timeout_ms: int = Field(
        default=10000, description="Row-lock wait limit per unit of work (PostgreSQL)"
    )

    # Application Configuration
    app_name: str = Field(default="settlement-core", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    # Order resolution
    correlation_prefix: str = Field(
        default="purchase", description="Prefix used when generating correlation strings"
    )
    gateway_test_correlation_ids: List[str] = Field(
        default_factory=lambda: ["invoice_123124123"],
        description="Correlation strings sent by the gateway dashboard test button",
    )
    diagnostic_snapshot_limit: int = Field(
        default=50, description="Max candidate orders listed when resolution fails"
    )

    # Line-item fallbacks
    allow_working_selection_fallback: bool = Field(
        default=True, description="Use the user's unlinked selection when nothing else matches"
    )
    allow_quantity_inference_fallback: bool = Field(
        default=True, description="Infer quantity from total / unit price (legacy orders)"
    )

    model_config = SettingsConfigDict(
        env_prefix="SETTLEMENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("correlation_prefix")
    @classmethod
    def validate_correlation_prefix(cls, v: str) -> str:
        """Prefix must be a plain word so it can be embedded in a pattern."""
        v = v.strip()
        if not v or not v.replace("-", "").replace("_", "").isalnum():
            raise ValueError("Correlation prefix must be alphanumeric")
        return v

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
