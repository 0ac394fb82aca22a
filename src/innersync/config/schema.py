"""Configuration schema for the sync settings document."""

import socket
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


DEFAULT_API_BASE_URL = "https://innersync.com.au"
DEFAULT_DEBOUNCE_MS = 2000
DEFAULT_HISTORY_LIMIT = 50


def default_device_name() -> str:
    """Device name sent with login requests."""
    return socket.gethostname() or "innersync-sync"


class LoginConfig(BaseModel):
    """Credentials used to obtain an API token."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str = Field(default="", description="Account email")
    password: str = Field(default="", description="Account password")
    device_name: str = Field(default_factory=default_device_name, description="Device label for the issued token")
    replace_existing: bool = Field(default=True, description="Revoke other tokens for this device")
    remember: bool = Field(default=False, description="Keep the password in the settings file")

    @property
    def is_complete(self) -> bool:
        return bool(self.email and self.password)


class SyncSettings(BaseModel):
    """Settings document for a sync service.

    Keys may be written in snake_case or camelCase, so settings files written
    by the desktop app load unchanged.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    # Locations
    base_dir: Optional[str] = Field(None, description="Directory that relative paths resolve against")
    tfx_file: Optional[str] = Field(None, description="Timetable document to export")
    output_dir: Optional[str] = Field(None, description="Directory for generated export files")
    watch_files: Optional[List[str]] = Field(None, description="Files whose changes trigger a sync")

    # Scheduling
    debounce_ms: int = Field(
        default=DEFAULT_DEBOUNCE_MS,
        description="Quiet period before a triggered sync runs; 0 means the default",
    )

    # History
    history_path: Optional[str] = Field(None, description="JSON file for run history")
    history_limit: int = Field(default=DEFAULT_HISTORY_LIMIT, description="Maximum history entries kept")

    # Remote API
    token_cache_path: Optional[str] = Field(None, description="JSON file caching the API token")
    api_base_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("api_base_url", "apiBaseUrl", "api_url", "apiUrl"),
        description="Base URL of the upload API",
    )
    api_token: Optional[str] = Field(None, description="Explicit API token, bypasses the token cache")
    login: LoginConfig = Field(default_factory=LoginConfig, description="Login fallback credentials")

    @field_validator("debounce_ms")
    @classmethod
    def validate_debounce(cls, v):
        if v < 0:
            raise ValueError("debounce_ms must not be negative")
        return v

    @field_validator("history_limit")
    @classmethod
    def validate_history_limit(cls, v):
        if v < 1:
            raise ValueError("history_limit must be at least 1")
        return v

    @field_validator("login", mode="before")
    @classmethod
    def validate_login(cls, v):
        # A null login block means "no credentials"
        return {} if v is None else v
