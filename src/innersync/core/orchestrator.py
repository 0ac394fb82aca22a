"""Sync orchestrator: debounced, single-flight export and upload runs."""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .events import EventStream
from .history import HistoryEntry, HistoryLog, capitalize_reason
from .watcher import ChangeWatcher, FileEvent
from ..api_clients import InnersyncClient
from ..auth import TokenCache
from ..config import ResolvedConfig
from ..exporter import ExportResult, generate_timetable
from ..utils.logging import get_logger


STARTUP_REASON = "startup sync"
MANUAL_REASON = "manual trigger"
FALLBACK_REASON = "change detected"

Exporter = Callable[[Path, Path], Awaitable[ExportResult]]
WatcherFactory = Callable[..., Any]


class RunState(str, Enum):
    """Public state of the orchestrator."""
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    STOPPED = "stopped"
    SIGNED_OUT = "signed-out"


class RunStatus(str, Enum):
    """Outcome of a completed run."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class RunResult:
    """Result of one pipeline run."""

    status: RunStatus
    timestamp: str
    trigger: str
    reason: Optional[str] = None
    payload_hash: Optional[str] = None
    message: Optional[str] = None
    output_dir: Optional[str] = None
    response: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot broadcast on every state transition and history change."""

    state: RunState
    paused: bool
    running: bool
    last_run: Optional[str]
    last_result: Optional[RunResult]
    history: Tuple[HistoryEntry, ...]
    watch_files: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "paused": self.paused,
            "running": self.running,
            "last_run": self.last_run,
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "history": [entry.to_dict() for entry in self.history],
            "watch_files": list(self.watch_files),
        }


@dataclass
class DebounceState:
    """Pending trigger slot and its timer; only the scheduling methods touch it."""

    timer_handle: Optional[asyncio.TimerHandle] = None
    pending_reason: Optional[str] = None
    # An immediate trigger arrived while a run was in flight
    immediate: bool = False

    def cancel_timer(self) -> None:
        if self.timer_handle is not None:
            self.timer_handle.cancel()
            self.timer_handle = None

    def consume_reason(self) -> str:
        reason = self.pending_reason or FALLBACK_REASON
        self.pending_reason = None
        return reason

    def reset(self) -> None:
        self.cancel_timer()
        self.pending_reason = None
        self.immediate = False


class SyncEngineError(Exception):
    """Base exception for orchestrator errors."""
    pass


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncOrchestrator:
    """Turns file events and manual triggers into serialized sync runs.

    Triggers funnel into :meth:`schedule_run`. File events are debounced
    (last reason wins), manual triggers start immediately unless a run is in
    flight, and at most one export+upload pipeline runs at a time. Every
    transition is published on :attr:`status_events`; every history change on
    :attr:`history_events`.
    """

    def __init__(
        self,
        config: ResolvedConfig,
        exporter: Optional[Exporter] = None,
        client: Optional[InnersyncClient] = None,
        history: Optional[HistoryLog] = None,
        watcher_factory: Optional[WatcherFactory] = None
    ):
        """Initialize the orchestrator.

        Args:
            config: Resolved configuration
            exporter: Coroutine function ``(tfx_file, output_dir) -> ExportResult``
            client: Upload client; built from the config when omitted
            history: History log; built from the config when omitted
            watcher_factory: Callable ``(paths, on_event)`` returning a watcher
        """
        self.config = config
        self.exporter = exporter or self._default_export
        self.client = client or InnersyncClient(
            config.api_base_url,
            TokenCache(config.token_cache_path)
        )
        self.history = history or HistoryLog(config.history_path, config.history_limit)
        self.watcher_factory = watcher_factory or ChangeWatcher
        self.logger = get_logger(self.__class__.__name__)

        self.status_events: EventStream[SyncStatus] = EventStream("status")
        self.history_events: EventStream[List[HistoryEntry]] = EventStream("history")

        self._state = RunState.IDLE
        self._running = False
        self._paused = False
        self._stopping = False
        self._last_run: Optional[str] = None
        self._last_result: Optional[RunResult] = None
        self._debounce = DebounceState()
        self._run_task: Optional[asyncio.Task] = None
        self._watcher = None

    # Properties

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def running(self) -> bool:
        return self._running

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def last_run(self) -> Optional[str]:
        return self._last_run

    @property
    def last_result(self) -> Optional[RunResult]:
        return self._last_result

    @property
    def watch_files(self) -> Tuple[str, ...]:
        return tuple(str(path) for path in self.config.watch_files)

    # Lifecycle

    async def start(self) -> Optional[RunResult]:
        """Load history, start watching and perform the startup run."""
        if self._stopping or self._state == RunState.STOPPED:
            raise SyncEngineError("Orchestrator has been stopped")

        self.history.load()
        await self._setup_watcher()

        if self._running:
            return None
        return await asyncio.shield(self._launch_run(STARTUP_REASON))

    async def stop(self) -> None:
        """Stop watching and cancel pending triggers; an in-flight run finishes first."""
        self._stopping = True
        await self._close_watcher()
        self._debounce.reset()

        task = self._run_task
        if task is not None and not task.done():
            self.logger.info("Waiting for in-flight sync to finish")
            await asyncio.shield(task)

        await self.history.flush()
        self._state = RunState.STOPPED
        self.logger.info("Sync orchestrator stopped")
        self._emit_status()

    async def pause(self) -> None:
        self._paused = True
        await self._close_watcher()
        self.logger.info("Sync paused")
        self._emit_status()

    async def resume(self) -> None:
        if not self._paused:
            return
        self._paused = False
        await self._setup_watcher()
        self.logger.info("Sync resumed")
        self._emit_status()
        self._drain_immediate()

    # Triggers

    async def trigger_sync(self, reason: str = MANUAL_REASON) -> Optional[RunResult]:
        """Request an immediate run.

        Returns the run's result when it started right away, None when the
        request was dropped (paused) or queued behind an in-flight run.
        """
        if self._paused:
            self.logger.warning("Ignored trigger while paused", reason=reason)
            return None
        task = self.schedule_run(reason, immediate=True)
        if task is None:
            return None
        return await asyncio.shield(task)

    def schedule_run(self, reason: str, immediate: bool = False) -> Optional[asyncio.Task]:
        """Single entry point for all triggers.

        Returns the task of a run started immediately, otherwise None.
        """
        if self._stopping or self._state == RunState.STOPPED:
            self.logger.debug("Ignored trigger after stop", reason=reason)
            return None
        if self._paused:
            return None

        self._debounce.pending_reason = reason
        self._debounce.cancel_timer()

        if not immediate:
            self._arm_timer()
            return None

        if self._running:
            self._debounce.immediate = True
            self.logger.info("Sync in progress; trigger queued", reason=reason)
            return None
        return self._launch_run(self._debounce.consume_reason())

    def handle_file_event(self, event: Union[FileEvent, str], path: str) -> None:
        """Watcher callback: additions and changes schedule a debounced run."""
        event = FileEvent(event)
        if event == FileEvent.ADD:
            self.schedule_run(f"file added: {path}")
        elif event == FileEvent.CHANGE:
            self.schedule_run(f"file changed: {path}")
        else:
            self.logger.info("Watched file removed", path=path)

    def _arm_timer(self) -> None:
        loop = asyncio.get_running_loop()
        self._debounce.timer_handle = loop.call_later(
            self.config.debounce_seconds,
            self._on_timer
        )

    def _on_timer(self) -> None:
        self._debounce.timer_handle = None
        if self._stopping:
            return
        if self._running or self._paused:
            # Re-evaluate after another window instead of running concurrently
            self._arm_timer()
            return
        self._launch_run(self._debounce.consume_reason())

    def _drain_immediate(self) -> None:
        if not self._debounce.immediate:
            return
        if self._running or self._paused or self._stopping:
            return
        self._debounce.immediate = False
        self._debounce.cancel_timer()
        self._launch_run(self._debounce.consume_reason())

    def _launch_run(self, reason: str) -> asyncio.Task:
        # Claimed before the task is scheduled so no second run can start
        self._running = True
        self._run_task = asyncio.create_task(self._run_pipeline(reason))
        return self._run_task

    # Pipeline

    async def run_sync(self, reason: str) -> RunResult:
        """Run the pipeline now, bypassing the debounce window.

        Raises:
            SyncEngineError: If a run is already in flight or the orchestrator is stopped
        """
        if self._stopping or self._state == RunState.STOPPED:
            raise SyncEngineError("Orchestrator has been stopped")
        if self._running:
            raise SyncEngineError("A sync is already running")
        return await asyncio.shield(self._launch_run(reason))

    async def _default_export(self, tfx_file: Path, output_dir: Path) -> ExportResult:
        return await generate_timetable(tfx_file, output_dir, base_dir=self.config.base_dir)

    async def _run_pipeline(self, reason: str) -> RunResult:
        self._running = True
        self._state = RunState.SYNCING
        self._emit_status()

        timestamp = utc_timestamp()
        self.logger.info("Sync started", reason=reason)

        try:
            try:
                export = await self.exporter(self.config.tfx_file, self.config.output_dir)
                upload = await self.client.upload_timetable(
                    export.upload_files(),
                    api_token=self.config.api_token,
                    login=self.config.login
                )

                status = RunStatus.SKIPPED if upload.skipped else RunStatus.SUCCESS
                message = upload.message or upload.reason
                result = RunResult(
                    status=status,
                    timestamp=timestamp,
                    trigger=reason,
                    reason=upload.reason or reason,
                    payload_hash=upload.payload_hash,
                    message=message,
                    output_dir=str(export.output_dir),
                    response=upload.body
                )
                entry = HistoryEntry(
                    timestamp=timestamp,
                    status=status.value,
                    reason=capitalize_reason(reason),
                    payload_hash=upload.payload_hash,
                    message=message,
                    skipped_reason=message if upload.skipped else None,
                    response=upload.body
                )
                next_state = RunState.IDLE

                if status == RunStatus.SKIPPED:
                    self.logger.info("Sync skipped", reason=upload.reason)
                else:
                    self.logger.info(
                        "Sync completed",
                        output_dir=str(export.output_dir),
                        payload_hash=upload.payload_hash
                    )

            except Exception as e:
                message = str(e) or e.__class__.__name__
                result = RunResult(
                    status=RunStatus.ERROR,
                    timestamp=timestamp,
                    trigger=reason,
                    reason=reason,
                    message=message
                )
                entry = HistoryEntry(
                    timestamp=timestamp,
                    status=RunStatus.ERROR.value,
                    reason=capitalize_reason(reason),
                    message=message
                )
                next_state = RunState.ERROR
                self.logger.error("Sync failed", reason=reason, error=message)

            self._last_run = timestamp
            self._last_result = result
            self._state = next_state
            self._record_history(entry)
            return result

        finally:
            self._running = False
            self._run_task = None
            self._emit_status()
            self._drain_immediate()

    # Status

    def get_status(self) -> SyncStatus:
        return SyncStatus(
            state=self._state,
            paused=self._paused,
            running=self._running,
            last_run=self._last_run,
            last_result=self._last_result,
            history=tuple(self.history.entries),
            watch_files=self.watch_files
        )

    def _record_history(self, entry: HistoryEntry) -> None:
        entries = self.history.append(entry)
        self.history_events.emit(entries)

    def _emit_status(self) -> None:
        self.status_events.emit(self.get_status())

    # Watcher

    async def _setup_watcher(self) -> None:
        if self._watcher is not None or self._paused or self._stopping:
            return
        if not self.config.watch_files:
            self.logger.info("No files configured to watch")
            return
        self._watcher = self.watcher_factory(list(self.config.watch_files), self.handle_file_event)
        await self._watcher.start()

    async def _close_watcher(self) -> None:
        if self._watcher is None:
            return
        watcher, self._watcher = self._watcher, None
        await watcher.close()
