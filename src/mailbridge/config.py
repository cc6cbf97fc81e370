"""Configuration management for mailbridge.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the MAILBRIDGE_ prefix (e.g., MAILBRIDGE_DB_PATH).
    """

    model_config = SettingsConfigDict(
        env_prefix="MAILBRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    db_path: Path = Field(
        default=Path("mailbridge.sqlite3"),
        description="Path to the SQLite database holding accounts, messages and conversations",
    )

    # Sync
    sync_default_max_messages: int = Field(
        default=5,
        ge=1,
        description="Number of messages fetched per sync call when the caller does not say",
    )
    sync_max_messages_limit: int = Field(
        default=10,
        ge=1,
        description=(
            "Hard cap on messages fetched per sync call. Bounds the blocking time "
            "and network exposure of a single invocation."
        ),
    )
    snippet_length: int = Field(
        default=100,
        ge=10,
        description="Maximum length of the conversation snippet preview",
    )

    # Mailbox transport
    imap_mailbox: str = Field(
        default="INBOX",
        description="Mailbox selected for fetching (only one folder is synchronized)",
    )
    imap_timeout: float = Field(
        default=30.0,
        description="Socket timeout for IMAP connections in seconds",
    )
    smtp_timeout: float = Field(
        default=30.0,
        description="Socket timeout for SMTP connections in seconds",
    )
    connect_retries: int = Field(
        default=2,
        ge=0,
        description="Retries for establishing a mailbox connection (auth failures are never retried)",
    )
    connect_retry_delay: float = Field(
        default=1.0,
        description="Initial delay between connection retries in seconds",
    )
    mark_fetched_as_read: bool = Field(
        default=False,
        description="Set the \\Seen flag on the server for fetched messages",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    @model_validator(mode="after")
    def _default_within_limit(self) -> "Settings":
        if self.sync_default_max_messages > self.sync_max_messages_limit:
            self.sync_default_max_messages = self.sync_max_messages_limit
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
