"""File-backed cache for the API bearer token."""

import json
from pathlib import Path
from typing import Optional, Union

import structlog

logger = structlog.get_logger(__name__)


class TokenCache:
    """Reads, writes and clears a single cached token.

    The token is stored as ``{"token": "..."}``. With no path configured the
    cache is inert: reads return None and writes are no-ops.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None

    def read(self) -> Optional[str]:
        """Return the cached token, or None if it cannot be read."""
        if not self.path:
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            token = data.get("token") if isinstance(data, dict) else None
            return token or None
        except (OSError, ValueError):
            return None

    def write(self, token: str) -> None:
        """Cache ``token``; failures are logged."""
        if not self.path:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump({"token": token}, f)
            logger.debug("Token cached", path=str(self.path))
        except OSError as e:
            logger.warning("Unable to cache token", path=str(self.path), error=str(e))

    def clear(self) -> None:
        """Remove the cached token if present."""
        if not self.path:
            return
        try:
            self.path.unlink()
            logger.info("Cached token cleared", path=str(self.path))
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Unable to clear cached token", path=str(self.path), error=str(e))
