"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file and override existing env vars
load_dotenv(override=True)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Source providers
    github_api_url: str = "https://api.github.com"
    gitlab_api_url: str = "https://gitlab.com/api/v4"

    # Hosting providers
    firebase_hosting_api_url: str = "https://firebasehosting.googleapis.com/v1beta1"
    cloudflare_api_url: str = "https://api.cloudflare.com/client/v4"

    # Google OAuth (token refresh for Firebase Hosting)
    google_token_url: str = "https://oauth2.googleapis.com/token"
    google_client_id: str = Field(default="")
    google_client_secret: str = Field(default="")

    # Workspace
    workspace_root: str | None = None  # Defaults to the system temp dir
    workspace_prefix: str = "repodeploy"

    # Pipeline limits
    build_timeout_seconds: int = 600
    http_timeout_seconds: float = 30.0
    fetch_max_attempts: int = 3
    fetch_retry_backoff_seconds: float = 1.0
    upload_concurrency: int = 8
    status_ttl_hours: int = 24
    status_cleanup_interval_seconds: float = 600.0

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    # Empty disables the log file
    log_directory: str = "logs"
    log_file_name: str = "repodeploy.log"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
