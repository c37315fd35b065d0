"""
Configuration management for Tracey.

Uses Pydantic Settings for type-safe configuration with environment variable support.
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Base paths
ROOT_DIR = Path(__file__).parent.parent.parent
PACKAGE_DIR = ROOT_DIR / "tracey"
LOGS_DIR = ROOT_DIR / "logs"


class DatabaseSettings(BaseSettings):
    """MongoDB database configuration."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    host: str = "localhost"
    port: int = 27017
    name: str = "tracey"
    username: str | None = None
    password: str | None = None
    replica_set: str | None = None  # required for multi-document transactions

    @property
    def connection_string(self) -> str:
        """Generate MongoDB connection string."""
        if self.username and self.password:
            return f"mongodb://{self.username}:{self.password}@{self.host}:{self.port}"
        return f"mongodb://{self.host}:{self.port}"


class MatchingSettings(BaseSettings):
    """Matching engine tuning. Similarity thresholds are fixed in constants."""

    model_config = SettingsConfigDict(env_prefix="MATCH_")

    search_limit: int = 5  # results returned by semantic search
    # Dimension produced by the AI collaborator; 0 disables the check
    embedding_dimension: int = 768


class NotificationSettings(BaseSettings):
    """
    Defaults applied when a user has no stored notification preference.

    The web client historically disagreed on the push default (opt-out on
    the matching path, opt-in at sign-up), so the policy lives here rather
    than being hard-coded at each call site.
    """

    model_config = SettingsConfigDict(env_prefix="NOTIFY_")

    default_email_enabled: bool = True
    default_push_enabled: bool = True
    default_min_match_score: float = Field(0.70, ge=0, le=1)
    app_url: str = "http://localhost:3000"


class EmailSettings(BaseSettings):
    """Transactional email (Resend) configuration."""

    model_config = SettingsConfigDict(env_prefix="EMAIL_")

    api_key: str | None = None
    api_url: str = "https://api.resend.com/emails"
    sender: str | None = None  # e.g. "Tracey <matches@example.com>"
    timeout_seconds: float = 10.0

    @field_validator("api_key", "sender", mode="after")
    @classmethod
    def strip_blank(cls, v: Optional[str]) -> Optional[str]:
        """Treat whitespace-only values as unset."""
        if v is None:
            return None
        return v.strip() or None


class FirebaseSettings(BaseSettings):
    """Firebase Admin SDK configuration for push delivery and ID tokens."""

    model_config = SettingsConfigDict(env_prefix="FIREBASE_")

    credentials_path: Path | None = None
    project_id: str | None = None


class QueueSettings(BaseSettings):
    """Retry queue processing configuration."""

    model_config = SettingsConfigDict(env_prefix="QUEUE_")

    cron_secret: str | None = None
    poll_interval_seconds: int = 60
    cleanup_days: int = 7
    scheduler_enabled: bool = True


class ApiSettings(BaseSettings):
    """HTTP API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: str = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"
    file_path: Path = LOGS_DIR / "tracey.log"
    rotation: str = "10 MB"
    retention: str = "30 days"
    console_output: bool = True
    file_output: bool = True


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application metadata
    name: str = "Tracey"
    version: str = "0.1.0"
    description: str = "Lost & found matching and notification core"
    debug: bool = False

    # Environment
    environment: Literal["development", "production", "testing"] = "development"

    # Nested settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)
    firebase: FirebaseSettings = Field(default_factory=FirebaseSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# Global settings instance (singleton pattern)
_settings: AppSettings | None = None


def get_settings() -> AppSettings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def reload_settings() -> AppSettings:
    """Force reload settings from environment."""
    global _settings
    _settings = AppSettings()
    return _settings
