"""Configuration management for the Funding Platform.

Settings are loaded with Pydantic Settings from environment variables
(prefixed with ``FUNDING_``) and an optional ``.env`` file. They are
validated once at startup and treated as immutable afterwards.
"""

from datetime import timedelta
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_ACCESS_SECRET = "access-secret-change-in-production"
DEFAULT_REFRESH_SECRET = "refresh-secret-change-in-production"

MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application configuration settings.

    Settings are loaded from environment variables and .env files.
    All configuration values are validated at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FUNDING_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Settings
    app_name: str = "Funding Platform"
    app_version: str = "0.1.0"
    environment: Literal["development", "production", "testing"] = "development"
    debug: bool = False
    api_prefix: str = "/api/v1"

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1

    # Database Settings
    database_url: str = "sqlite+aiosqlite:///./data/funding.db"
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 3600
    db_echo: bool = False
    db_ssl: bool = False
    db_log_statement_length: int = 100

    # Token Settings
    jwt_access_secret: str = Field(
        default=DEFAULT_ACCESS_SECRET,
        description="Secret used to sign access tokens",
    )
    jwt_refresh_secret: str = Field(
        default=DEFAULT_REFRESH_SECRET,
        description="Secret used to sign refresh tokens (independent of the access secret)",
    )
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "funding-platform"
    jwt_audience: str = "funding-platform-api"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    refresh_max_rotations: int = 5
    revocation_backend: Literal["memory", "database"] = "memory"

    # Session Settings
    session_inactivity_timeout_minutes: int = 30
    session_absolute_timeout_hours: int = 12
    session_extend_on_activity: bool = True
    session_cookie_name: str = "funding_session"
    session_cookie_secure: bool | None = None
    session_cookie_samesite: Literal["strict", "lax", "none"] = "strict"

    # CORS Settings
    cors_origins: Annotated[list[str], NoDecode] = Field(default=["http://localhost:3000", "http://localhost:5173"])

    # Logging Settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("refresh_max_rotations")
    @classmethod
    def validate_max_rotations(cls, v: int) -> int:
        """A family must allow at least one rotation."""
        if v < 1:
            raise ValueError("refresh_max_rotations must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_token_secrets(self) -> "Settings":
        """Fail closed on placeholder or weak token secrets in production."""
        if not self.is_production:
            return self

        for name, value, placeholder in (
            ("jwt_access_secret", self.jwt_access_secret, DEFAULT_ACCESS_SECRET),
            ("jwt_refresh_secret", self.jwt_refresh_secret, DEFAULT_REFRESH_SECRET),
        ):
            if value == placeholder or "change-in-production" in value.lower():
                raise ValueError(f"{name} must not be a placeholder value in production.")
            if len(value) < MIN_SECRET_LENGTH:
                raise ValueError(
                    f"{name} must be at least {MIN_SECRET_LENGTH} characters in production."
                )

        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("Access and refresh token secrets must differ.")
        return self

    @model_validator(mode="after")
    def validate_sqlite_workers(self) -> "Settings":
        """Validate that SQLite is not used with multiple workers."""
        if self.workers > 1 and self.database_url.startswith("sqlite"):
            raise ValueError(
                "SQLite does not support multiple worker processes. "
                f"Requested {self.workers} workers, but SQLite requires workers=1. "
                "Either use --workers 1 or switch to PostgreSQL."
            )
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == "testing"

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.access_token_expire_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.refresh_token_expire_days)

    @property
    def session_inactivity_timeout(self) -> timedelta:
        return timedelta(minutes=self.session_inactivity_timeout_minutes)

    @property
    def session_absolute_timeout(self) -> timedelta:
        return timedelta(hours=self.session_absolute_timeout_hours)

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies default to on in production only."""
        if self.session_cookie_secure is None:
            return self.is_production
        return self.session_cookie_secure


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    This function caches the settings instance to avoid reloading
    configuration on every call. Settings are loaded once at startup.

    Returns:
        Settings: Cached application settings instance.
    """
    return Settings()
