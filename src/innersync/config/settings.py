"""Application configuration settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file_path: Optional[str] = Field(default="./logs/innersync.log")


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="INNERSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    name: str = Field(default="innersync")
    version: str = Field(default="1.0.0")
    environment: str = Field(default="development")

    # Sync settings document; see config.loader.load_config_from_env
    config_file: Optional[str] = Field(default=None)

    # Port for the local status server, disabled when unset
    status_port: Optional[int] = Field(default=None)

    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# Global settings instance
settings = AppSettings()


def get_settings() -> AppSettings:
    """Get application settings."""
    return settings
