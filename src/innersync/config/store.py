"""Persisted settings store for long-running sync services."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from .loader import ConfigLoader, ConfigurationError
from .schema import DEFAULT_API_BASE_URL, SyncSettings
from ..utils.logging import get_logger, log_duration


SETTINGS_FILE_NAME = "settings.json"
DEFAULT_STORE_HISTORY_LIMIT = 100

# Watch entries written by early releases before the user picked real files
LEGACY_WATCH_PLACEHOLDERS = frozenset([
    "Timetable.tfx",
    "Year 7.sfx",
    "Year 8.sfx",
    "Year 9.sfx",
    "Year 10.sfx",
    "Year 11.sfx",
    "Year 12.sfx",
])


def sanitize_watch_files(values: Optional[List[str]]) -> List[str]:
    """Drop empty values and legacy placeholder names."""
    if not values:
        return []
    return [value for value in values if value and value not in LEGACY_WATCH_PLACEHOLDERS]


def default_store_settings(data_dir: Union[str, Path]) -> SyncSettings:
    """Defaults for a settings store rooted at ``data_dir``."""
    data_dir = Path(data_dir)
    return SyncSettings(
        output_dir=str(data_dir / "generated"),
        watch_files=[],
        token_cache_path=str(data_dir / ".cache" / "token.json"),
        history_path=str(data_dir / "history" / "sync-history.json"),
        history_limit=DEFAULT_STORE_HISTORY_LIMIT,
    )


class SettingsStore:
    """Loads, updates and persists sync settings in ``<data_dir>/settings.json``."""

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self.file_path = self.data_dir / SETTINGS_FILE_NAME
        self.loader = ConfigLoader()
        self.logger = get_logger(self.__class__.__name__)
        self._settings = default_store_settings(self.data_dir)

    @log_duration
    def load(self) -> SyncSettings:
        """Load settings from disk, writing defaults when the file is missing or unreadable."""
        defaults = default_store_settings(self.data_dir)
        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ConfigurationError("Settings file must contain an object")
            # History lives in its own file
            raw.pop("history", None)
            merged = {**defaults.model_dump(), **self.loader.load_from_dict(raw).model_dump(exclude_unset=True)}
            self._settings = self._normalize(SyncSettings.model_validate(merged))
        except FileNotFoundError:
            self._settings = defaults
            self.save()
        except (OSError, ValueError, ConfigurationError) as e:
            self.logger.warning("Unable to load settings, using defaults", error=str(e))
            self._settings = defaults
            self.save()

        return self._settings

    def get(self) -> SyncSettings:
        return self._settings

    def save(self, settings: Optional[SyncSettings] = None) -> SyncSettings:
        """Persist settings; the API base URL is fixed and never written."""
        if settings is not None:
            self._settings = settings

        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        data = self._settings.model_dump(mode="json", exclude={"api_base_url"})
        with open(self.file_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)

        return self._settings

    def update(self, patch: Dict[str, Any]) -> SyncSettings:
        """Apply a partial update, normalize and persist it."""
        data = {**self._settings.model_dump(), **patch}
        data.pop("api_base_url", None)
        try:
            settings = SyncSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings update: {e}")

        return self.save(self._normalize(settings))

    def _normalize(self, settings: SyncSettings) -> SyncSettings:
        watch_files = sanitize_watch_files(settings.watch_files)
        tfx_file = settings.tfx_file

        if not watch_files:
            tfx_file = None
        elif not tfx_file or tfx_file not in watch_files:
            tfx_file = watch_files[0]

        return settings.model_copy(update={
            "watch_files": watch_files,
            "tfx_file": tfx_file,
            "api_base_url": DEFAULT_API_BASE_URL,
        })
