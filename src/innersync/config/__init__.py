"""Configuration package for the sync service."""

from .settings import (
    LoggingSettings,
    AppSettings,
    get_settings
)

from .schema import (
    LoginConfig,
    SyncSettings,
    DEFAULT_API_BASE_URL,
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_HISTORY_LIMIT
)

from .resolved import ResolvedConfig, resolve_path

from .loader import (
    ConfigLoader,
    ConfigurationError,
    load_config_from_env
)

from .store import SettingsStore, sanitize_watch_files

__all__ = [
    "LoggingSettings",
    "AppSettings",
    "get_settings",

    "LoginConfig",
    "SyncSettings",
    "DEFAULT_API_BASE_URL",
    "DEFAULT_DEBOUNCE_MS",
    "DEFAULT_HISTORY_LIMIT",

    "ResolvedConfig",
    "resolve_path",

    "ConfigLoader",
    "ConfigurationError",
    "load_config_from_env",

    "SettingsStore",
    "sanitize_watch_files"
]
