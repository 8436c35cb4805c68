"""
Configuration management for the Idea Board engine.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = Field(default="Idea Board")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    # Database
    database_url: str = Field(default="sqlite:///./idea_board.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # Default auto-move thresholds, used when a board does not override them
    threshold_to_discussion: int = Field(default=5, ge=1)
    threshold_to_production: int = Field(default=10, ge=1)
    threshold_to_backlog: int = Field(default=5, ge=1)

    # Capability configuration
    admin_identities: str = Field(
        default="",
        description="Comma-separated identities treated as admins on every board.",
    )

    def admin_identity_list(self) -> List[str]:
        """Parse ``admin_identities`` into a list, dropping blanks."""
        if not self.admin_identities or not self.admin_identities.strip():
            return []
        return [p.strip() for p in self.admin_identities.split(",") if p.strip()]


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
