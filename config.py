"""
Application configuration settings.

Values come from environment variables, or a .env file for local development.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_title: str = "Bitespeed Contact Reconciliation API"
    app_version: str = "1.1.0"
    log_level: str = "INFO"

    # SQLite file holding the Contact table
    database_path: str = "contacts.db"
    busy_timeout_seconds: float = Field(default=5.0, gt=0)

    # Full re-runs of a resolution after a lock conflict
    max_resolve_attempts: int = Field(default=3, ge=1)

    # Re-point secondaries of a demoted primary to the winning primary
    flatten_on_merge: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
