"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ASYNC_SCHEMES = frozenset({"postgresql+asyncpg", "sqlite+aiosqlite"})
_LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        description="Async SQLAlchemy connection string (postgresql+asyncpg or sqlite+aiosqlite)",
    )
    database_echo: bool = Field(
        default=False,
        description="Log every SQL statement",
    )

    @field_validator("database_url")
    @classmethod
    def validate_async_driver(cls, v: str) -> str:
        scheme = v.split("://", 1)[0]
        if scheme not in _ASYNC_SCHEMES:
            msg = f"database_url must use an async driver ({', '.join(sorted(_ASYNC_SCHEMES))}), got {scheme!r}"
            raise ValueError(msg)
        return v

    # Export
    export_chunk_size: int = Field(
        default=1000,
        description="Rows fetched, encoded and persisted per export chunk",
        gt=0,
    )
    export_chunk_delay_ms: int = Field(
        default=50,
        description="Pause between export chunks in milliseconds",
        ge=0,
    )
    export_stream_queue_size: int = Field(
        default=16,
        description="Undelivered events buffered per streaming export before the loop waits",
        gt=0,
    )
    export_dir: str = Field(
        default="./exports",
        description="Default directory for CLI export output files",
    )

    @property
    def export_chunk_delay(self) -> float:
        """Inter-chunk pause in seconds."""
        return self.export_chunk_delay_ms / 1000

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            msg = f"log_level must be one of {', '.join(_LOG_LEVELS)}"
            raise ValueError(msg)
        return level
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON log records on stderr",
    )

    # CORS
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (must be explicitly configured)",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        if not self.cors_origins.strip():
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
