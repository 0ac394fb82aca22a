"""Core sync orchestration package."""

from .events import EventStream
from .history import HistoryEntry, HistoryLog
from .watcher import ChangeWatcher, FileEvent
from .orchestrator import (
    DebounceState,
    RunResult,
    RunState,
    RunStatus,
    SyncEngineError,
    SyncOrchestrator,
    SyncStatus
)
from .controller import SyncController

__all__ = [
    "EventStream",
    "HistoryEntry",
    "HistoryLog",
    "ChangeWatcher",
    "FileEvent",
    "DebounceState",
    "RunResult",
    "RunState",
    "RunStatus",
    "SyncEngineError",
    "SyncOrchestrator",
    "SyncStatus",
    "SyncController"
]
