"""Application configuration schema and validation."""

from typing import Literal

from pydantic import Field, PostgresDsn, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: Literal["dev", "staging", "prod"] = Field(
        ...,
        description="Application environment",
    )
    db_dsn: PostgresDsn = Field(
        ...,
        description="PostgreSQL datastore connection string",
    )
    db_service_key: SecretStr = Field(
        ...,
        description="Privileged datastore access key (used as the connection password)",
    )
    db_pool_min: int = Field(
        default=2,
        ge=1,
        description="Minimum database connection pool size",
    )
    db_pool_max: int = Field(
        default=10,
        ge=1,
        description="Maximum database connection pool size",
    )
    stripe_secret: SecretStr = Field(
        ...,
        description="Stripe secret API key",
    )
    stripe_webhook_secret: SecretStr = Field(
        ...,
        description="Stripe webhook signing secret (whsec_...)",
    )
    stripe_price_weekly: str = Field(
        ...,
        min_length=1,
        description="Stripe price ID for the weekly subscription plan",
    )
    stripe_price_lifetime: str = Field(
        ...,
        min_length=1,
        description="Stripe price ID for the one-time lifetime plan",
    )
    client_url: str = Field(
        ...,
        min_length=1,
        description="Frontend base URL; also the allowed CORS origin",
    )
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="HTTP listen port",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("db_pool_max")
    @classmethod
    def validate_pool_max(cls, v: int, info) -> int:
        """Ensure pool_max >= pool_min."""
        if "db_pool_min" in info.data and v < info.data["db_pool_min"]:
            raise ValueError("db_pool_max must be >= db_pool_min")
        return v

    @field_validator("client_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Redirect URLs are built as f"{client_url}/path"."""
        return v.rstrip("/")

    def plan_prices(self) -> dict[str, str]:
        """Static plan -> Stripe price ID mapping."""
        return {
            "weekly": self.stripe_price_weekly,
            "lifetime": self.stripe_price_lifetime,
        }


_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create the singleton AppConfig instance."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config
