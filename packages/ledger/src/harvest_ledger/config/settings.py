"""Configuration settings for the harvest ledger."""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings read from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backing store (PostgREST / Supabase REST endpoint)
    store_url: str = Field(
        default="http://localhost:54321/rest/v1", validation_alias="LEDGER_STORE_URL"
    )
    store_api_key: SecretStr = Field(
        default=SecretStr(""), validation_alias="LEDGER_STORE_API_KEY"
    )
    store_timeout: float = Field(default=30.0, validation_alias="LEDGER_STORE_TIMEOUT")
    store_max_retries: int = Field(default=3, validation_alias="LEDGER_STORE_MAX_RETRIES")

    # Reconciliation
    consistency_epsilon: Decimal = Field(
        default=Decimal("0.01"), validation_alias="LEDGER_CONSISTENCY_EPSILON"
    )
    job_reversal_mode: Literal["exact", "legacy"] = Field(
        default="exact", validation_alias="LEDGER_JOB_REVERSAL_MODE"
    )
    recent_limit: int = Field(default=5, validation_alias="LEDGER_RECENT_LIMIT")

    # Notifications
    notify_payments: bool = Field(default=False, validation_alias="LEDGER_NOTIFY_PAYMENTS")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
