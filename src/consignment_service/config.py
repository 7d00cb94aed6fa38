"""Application configuration objects."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pydantic settings used to configure the application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(
        default="Consignment Inventory Service",
        description="Human friendly name for the API.",
    )
    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Deployment environment flag used for logging.",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./consignment.db",
        description="SQLAlchemy compatible database URL.",
    )
    echo_sql: bool = Field(
        default=False,
        description="Enable SQL echo logging for debugging.",
    )
    access_control_allow_origin: str = Field(
        default="*",
        description="Allowed CORS origins for the API, comma separated.",
    )
    default_timezone: str = Field(
        default="Asia/Tokyo",
        description="Timezone used to render timestamps in exports.",
    )
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False, description="Emit one JSON object per log line.")

    secret_key: str = Field(
        default="consignment-secret-key",
        description="Key used to sign API tokens.",
    )
    api_token_salt: str = Field(default="consignment-api-token")
    api_token_default_age: int = Field(default=60 * 60 * 24, gt=0)
    api_token_max_age: int = Field(default=60 * 60 * 24 * 30, gt=0)

    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=100, ge=1)
    select_all_limit: int = Field(
        default=10000,
        ge=1,
        description="Upper bound of ids returned when selecting every filtered item.",
    )

    bootstrap_admin_username: str = Field(default="admin")
    bootstrap_admin_password: str = Field(default="admin")

    @field_validator("database_url")
    @classmethod
    def _validate_sqlite_path(cls, value: str) -> str:
        if value.startswith("sqlite") and ":memory:" not in value and "///" not in value:
            raise ValueError(
                "SQLite database URLs should be in the form sqlite+aiosqlite:///path/to/db"
            )
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of :class:`Settings`."""

    return Settings()


__all__ = ["Settings", "get_settings"]
