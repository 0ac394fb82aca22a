"""Configuration loader for JSON/YAML files and environment variables."""

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, Union

import yaml
from pydantic import ValidationError

from .schema import SyncSettings
from ..utils.logging import get_logger


class ConfigurationError(Exception):
    """Raised when configuration loading fails."""
    pass


class ConfigLoader:
    """Loads and validates sync settings from various sources."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def load_from_file(self, file_path: Union[str, Path]) -> SyncSettings:
        """Load settings from a JSON or YAML file.

        Args:
            file_path: Path to configuration file

        Returns:
            Validated SyncSettings object

        Raises:
            ConfigurationError: If file cannot be loaded or validated
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        self.logger.info("Loading configuration from file", file_path=str(file_path))

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                if file_path.suffix.lower() in ['.yaml', '.yml']:
                    data = yaml.safe_load(f)
                elif file_path.suffix.lower() == '.json':
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unsupported file format: {file_path.suffix}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration: {e}")

        settings = self.load_from_dict(data or {})

        # Relative paths in a config file are relative to the file itself
        if not settings.base_dir:
            settings = settings.model_copy(update={"base_dir": str(file_path.parent.resolve())})

        return settings

    def load_from_dict(self, data: Dict[str, Any]) -> SyncSettings:
        """Load settings from a dictionary.

        Args:
            data: Configuration data as dictionary

        Returns:
            Validated SyncSettings object
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a mapping")

        data = self._apply_env_overrides(data)

        try:
            settings = SyncSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        self.logger.info(
            "Configuration loaded",
            watch_files=len(settings.watch_files) if settings.watch_files is not None else None,
            api_token_configured=bool(settings.api_token),
            login_configured=settings.login.is_complete
        )

        return settings

    def save_to_file(self, settings: SyncSettings, file_path: Union[str, Path], format: str = 'json'):
        """Save settings to file.

        Args:
            settings: Settings to save
            file_path: Output file path
            format: Output format ('yaml' or 'json')
        """
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        data = settings.model_dump(mode="json")

        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                if format.lower() == 'yaml':
                    yaml.dump(data, f, default_flow_style=False, indent=2, allow_unicode=True)
                elif format.lower() == 'json':
                    json.dump(data, f, indent=2)
                else:
                    raise ConfigurationError(f"Unsupported format: {format}")
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration: {e}")

        self.logger.info("Configuration saved", file_path=str(file_path))

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration data.

        Environment variables use the format: INNERSYNC_<KEY>
        For example: INNERSYNC_API_TOKEN, INNERSYNC_DEBOUNCE_MS
        """
        data = _snake_case_keys(data)
        env_overrides: Dict[str, Any] = {}

        if os.getenv('INNERSYNC_API_TOKEN'):
            env_overrides['api_token'] = os.getenv('INNERSYNC_API_TOKEN')

        if os.getenv('INNERSYNC_API_BASE_URL'):
            env_overrides['api_base_url'] = os.getenv('INNERSYNC_API_BASE_URL')

        if os.getenv('INNERSYNC_DEBOUNCE_MS'):
            try:
                env_overrides['debounce_ms'] = int(os.getenv('INNERSYNC_DEBOUNCE_MS'))
            except ValueError:
                self.logger.warning("Invalid INNERSYNC_DEBOUNCE_MS value, ignoring")

        login_overrides = {}

        if os.getenv('INNERSYNC_LOGIN_EMAIL'):
            login_overrides['email'] = os.getenv('INNERSYNC_LOGIN_EMAIL')

        if os.getenv('INNERSYNC_LOGIN_PASSWORD'):
            login_overrides['password'] = os.getenv('INNERSYNC_LOGIN_PASSWORD')

        if login_overrides:
            env_overrides['login'] = {**(data.get('login') or {}), **login_overrides}

        if env_overrides:
            self.logger.info("Applied environment variable overrides", overrides=list(env_overrides.keys()))
            data = {**data, **env_overrides}

        return data


def _snake_case_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize camelCase keys (desktop settings files) to snake_case."""
    normalized = {}
    for key, value in data.items():
        snake = re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()
        if isinstance(value, dict):
            value = _snake_case_keys(value)
        normalized[snake] = value
    return normalized


def load_config_from_env() -> SyncSettings:
    """Load sync settings from environment variables and default files.

    Looks for configuration files in this order:
    1. INNERSYNC_CONFIG_FILE environment variable
    2. ./config.yaml
    3. ./config.yml
    4. ./config.json
    5. ./config.example.json

    If no file is found, default settings are returned.
    """
    loader = ConfigLoader()
    logger = get_logger("load_config_from_env")

    config_file = os.getenv('INNERSYNC_CONFIG_FILE')
    if config_file:
        if os.path.exists(config_file):
            return loader.load_from_file(config_file)
        logger.warning("Specified config file not found", file=config_file)

    possible_files = [
        './config.yaml',
        './config.yml',
        './config.json',
        './config.example.json'
    ]

    for file_path in possible_files:
        if os.path.exists(file_path):
            logger.info("Found configuration file", file=file_path)
            return loader.load_from_file(file_path)

    logger.info("No configuration file found, using defaults")
    return loader.load_from_dict({})
