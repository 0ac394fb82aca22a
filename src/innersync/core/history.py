"""Bounded, persisted log of sync run outcomes."""

import asyncio
import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from ..utils.logging import get_logger


def capitalize_reason(text: Optional[str]) -> str:
    """Upper-case the first letter of every space separated word."""
    if not text:
        return ""
    return " ".join(word[:1].upper() + word[1:] for word in text.split(" "))


@dataclass
class HistoryEntry:
    """One recorded sync run."""

    timestamp: str
    status: str
    reason: str
    payload_hash: Optional[str] = None
    message: Optional[str] = None
    skipped_reason: Optional[str] = None
    response: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


class HistoryLog:
    """Append-only history capped at ``limit`` entries, oldest evicted first.

    Each mutation schedules a best-effort save to ``path``; save failures are
    logged and never raised.
    """

    def __init__(self, path: Optional[Union[str, Path]], limit: int = 50):
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self.path = Path(path) if path else None
        self.limit = limit
        self._entries: List[HistoryEntry] = []
        self._pending_saves: Set[asyncio.Task] = set()
        self.logger = get_logger(self.__class__.__name__)

    @property
    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]

    def load(self) -> List[HistoryEntry]:
        """Load persisted entries, keeping only the newest ``limit``."""
        self._entries = []
        if not self.path:
            return self.entries
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
            if isinstance(raw, list):
                loaded = [HistoryEntry.from_dict(item) for item in raw if isinstance(item, dict)]
                self._entries = loaded[-self.limit:]
        except FileNotFoundError:
            pass
        except (OSError, ValueError, TypeError) as e:
            self.logger.warning("Unable to load history", path=str(self.path), error=str(e))
            self._entries = []
        return self.entries

    def append(self, entry: HistoryEntry) -> List[HistoryEntry]:
        """Append ``entry``, evict overflow from the front and schedule a save."""
        self._entries.append(entry)
        overflow = len(self._entries) - self.limit
        if overflow > 0:
            del self._entries[:overflow]
        self._schedule_save()
        return self.entries

    def _schedule_save(self) -> None:
        if not self.path:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.save()
            return
        task = loop.create_task(self._save_async())
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)

    async def _save_async(self) -> None:
        self.save()

    def save(self) -> bool:
        """Write the current entries; returns False on failure."""
        if not self.path:
            return False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(self.to_list(), f, indent=2, default=str)
            return True
        except OSError as e:
            self.logger.warning("Unable to persist history", path=str(self.path), error=str(e))
            return False

    async def flush(self) -> None:
        """Wait for scheduled saves to finish."""
        if self._pending_saves:
            await asyncio.gather(*list(self._pending_saves), return_exceptions=True)
