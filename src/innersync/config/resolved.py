"""Resolution of sync settings into the immutable runtime configuration."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from .schema import (
    DEFAULT_API_BASE_URL,
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_HISTORY_LIMIT,
    LoginConfig,
    SyncSettings,
)


DEFAULT_TFX_FILE = "Timetable.tfx"
DEFAULT_OUTPUT_DIR = "generated"
DEFAULT_HISTORY_FILE = "sync-history.json"


def resolve_path(
    base_dir: Path,
    value: Optional[Union[str, Path]],
    fallback: Optional[str] = None
) -> Optional[Path]:
    """Resolve ``value`` against ``base_dir``, falling back to ``fallback``.

    Absolute values are kept as given. Returns None when neither a value nor a
    fallback is available.
    """
    if value:
        path = Path(value).expanduser()
        return path if path.is_absolute() else (base_dir / path).resolve()
    if fallback:
        return (base_dir / fallback).resolve()
    return None


@dataclass(frozen=True)
class ResolvedConfig:
    """Fully resolved configuration consumed by the orchestrator."""

    base_dir: Path
    tfx_file: Path
    output_dir: Path
    watch_files: Tuple[Path, ...]
    history_path: Path
    history_limit: int
    debounce_ms: int
    token_cache_path: Optional[Path]
    api_base_url: str
    api_token: Optional[str]
    login: LoginConfig

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> "ResolvedConfig":
        base_dir = Path(settings.base_dir or Path.cwd()).expanduser().resolve()

        # An explicit empty list means "watch nothing"
        if settings.watch_files is None:
            watch_values = [DEFAULT_TFX_FILE]
        else:
            watch_values = [value for value in settings.watch_files if value]

        return cls(
            base_dir=base_dir,
            tfx_file=resolve_path(base_dir, settings.tfx_file, DEFAULT_TFX_FILE),
            output_dir=resolve_path(base_dir, settings.output_dir, DEFAULT_OUTPUT_DIR),
            watch_files=tuple(resolve_path(base_dir, value) for value in watch_values),
            history_path=resolve_path(base_dir, settings.history_path, DEFAULT_HISTORY_FILE),
            history_limit=settings.history_limit or DEFAULT_HISTORY_LIMIT,
            debounce_ms=settings.debounce_ms or DEFAULT_DEBOUNCE_MS,
            token_cache_path=resolve_path(base_dir, settings.token_cache_path),
            api_base_url=settings.api_base_url or DEFAULT_API_BASE_URL,
            api_token=settings.api_token or None,
            login=settings.login.model_copy(),
        )
