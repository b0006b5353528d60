"""
Configuration and settings for the quotes backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Database (Postgres expected, SQLite works for local runs)
    database_url: Optional[str] = Field(default=None)
    postgres_host: Optional[str] = Field(default=None)
    postgres_port: Optional[int] = Field(default=None)
    postgres_user: Optional[str] = Field(default=None)
    postgres_password: Optional[str] = Field(default=None)
    postgres_db: Optional[str] = Field(default=None)
    postgres_ssl: bool = Field(default=True)
    cloud_sql_connection_name: Optional[str] = Field(default=None)

    # Firebase service account
    fb_project_id: Optional[str] = Field(default=None)
    fb_client_email: Optional[str] = Field(default=None)
    fb_private_key: Optional[str] = Field(default=None)

    # Access control
    admin_emails: str = Field(default="")
    allowed_email_domain: str = Field(default="ilovesalt.com")
    list_users_page_size: int = Field(default=1000, ge=1, le=1000)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias="QUOTES_USE_IN_MEMORY_BACKENDS",
    )

    @property
    def has_firebase_credentials(self) -> bool:
        return bool(
            self.fb_project_id and self.fb_client_email and self.fb_private_key
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
