"""
Application configuration via Pydantic Settings.

All values are sourced from ``LICENSE_``-prefixed environment variables or
an .env file.
"""

from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Centralised, type-validated service configuration.

    The admin token is a SecretStr to prevent accidental logging. Leaving it
    unset disables every administrative operation.
    """

    model_config = SettingsConfigDict(
        env_prefix="LICENSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="License Key Service", description="Human-readable service name")
    app_version: str = Field(default="2.0", description="Version reported by the status endpoint")

    # Server
    host: str = Field(default="127.0.0.1", description="Bind host")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./keys.db",
        description="Async SQLAlchemy connection string.",
    )
    db_echo: bool = Field(default=False, description="Log all SQL statements (debug only)")

    # Administration
    admin_token: Optional[SecretStr] = Field(default=None, description="Shared administrative credential")

    # Key lifecycle
    default_validity_days: int = Field(default=365, gt=0, description="Validity window of generated keys")
    default_max_resets: int = Field(default=3, ge=0, description="HWID resets allowed per key")
    max_generate_count: int = Field(default=100, ge=1, le=10_000, description="Largest generation batch")
    max_generation_attempts: int = Field(default=5, ge=1, le=20, description="Retries on token collision")
    max_update_attempts: int = Field(default=3, ge=1, le=20, description="Retries on write conflict")
    allow_expired_activation: bool = Field(default=False, description="Let expired keys be activated")

    # HTTP
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Origins allowed by CORS")

    # Cache
    cache_ttl_seconds: int = Field(default=0, ge=0, description="Lookup cache TTL, 0 disables the cache")

    # Logging
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Minimum log level")
    log_json: bool = Field(default=True, description="Emit logs as JSON (False for dev console)")

    @field_validator("admin_token")
    @classmethod
    def admin_token_not_blank(cls, v: Optional[SecretStr]) -> Optional[SecretStr]:
        if v is not None and not v.get_secret_value().strip():
            return None
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached Settings singleton."""
    return Settings()
