"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class GmailDigestSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="GMAIL_DIGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OAuth client
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:8080/oauth/callback"
    token_uri: str = "https://oauth2.googleapis.com/token"

    # Gmail API settings
    max_results: int = 50

    # Digest window & AI request bounds
    default_lookback_hours: int = 24
    max_body_chars: int = 10_000
    classify_workers: int = 1

    # Gemini
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash-exp"

    # Database
    database_path: Path = Path("data/gmail_digest.db")

    # Schedule (cron fields)
    schedule_hours: str = "8,20"
    schedule_minute: int = 0
    schedule_timezone: str = "UTC"

    # Logging
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create the data directory if it doesn't exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
