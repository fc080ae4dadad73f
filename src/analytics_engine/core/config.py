"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Records database (saved queries, export jobs)
    database_url: str = Field(
        description="Async connection string for the records database",
    )
    database_schema: str | None = Field(
        default=None,
        description="PostgreSQL schema for isolated environments (e.g., pr_42)",
    )

    @field_validator("database_schema")
    @classmethod
    def validate_database_schema(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not re.match(r"^[a-z_][a-z0-9_]{0,62}$", v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    # Warehouse
    warehouse_url: str = Field(
        description="Async connection string for the analytics warehouse",
    )
    warehouse_query_timeout: float = Field(
        default=30.0,
        description="Default warehouse query timeout in seconds",
        gt=0,
    )

    # Result cache
    cache_enabled: bool = Field(
        default=True,
        description="Enable query result caching",
    )
    cache_backend: str = Field(
        default="memory",
        description="Cache backend: memory or redis",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the redis cache backend",
    )
    cache_ttl_seconds: int = Field(
        default=3600,
        description="Time-to-live for cached query results in seconds",
        gt=0,
    )
    cache_key_prefix: str = Field(
        default="analytics",
        description="Prefix for all query result cache keys",
        min_length=1,
    )
    cache_max_entries: int = Field(
        default=10_000,
        description="Maximum entries held by the in-memory cache backend",
        gt=0,
    )

    @field_validator("cache_backend")
    @classmethod
    def validate_cache_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("memory", "redis"):
            msg = "cache_backend must be 'memory' or 'redis'"
            raise ValueError(msg)
        return v

    # Export
    export_dir: str = Field(
        default="./temp/exports",
        description="Root directory for export artifacts (date-partitioned)",
    )
    export_retention_days: int = Field(
        default=7,
        description="Days a completed export artifact is kept before it expires",
        gt=0,
    )
    export_base_url: str = Field(
        default="/api/v1/exports/download",
        description="Base URL used to build export download links",
    )
    export_sweep_interval: int = Field(
        default=86400,
        description="Seconds between expired-export sweeps",
        ge=10,
    )
    export_worker_count: int = Field(
        default=2,
        description="Number of concurrent export workers",
        gt=0,
        le=32,
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment name (e.g. production, dev, staging)",
    )


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
