"""Filesystem watcher that reports changes to a fixed set of files."""

import asyncio
from collections import defaultdict
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from watchfiles import Change, awatch

from ..utils.logging import get_logger


class FileEvent(str, Enum):
    """Kinds of file events reported to listeners."""
    ADD = "add"
    CHANGE = "change"
    UNLINK = "unlink"


FileEventCallback = Callable[[FileEvent, str], None]

DEFAULT_STABILITY_MS = 1000
DEFAULT_POLL_MS = 100


def classify_changes(
    changes: Iterable[Tuple[Change, str]],
    watched: Set[str]
) -> List[Tuple[FileEvent, str]]:
    """Collapse a batch of raw changes into one event per watched path.

    A path that no longer exists is reported as removed; otherwise it is
    reported as added when the batch saw it created, else as changed.
    """
    by_path: Dict[str, Set[Change]] = defaultdict(set)
    for change, path in changes:
        normalized = str(Path(path))
        if normalized in watched:
            by_path[normalized].add(change)

    events = []
    for path in sorted(by_path):
        kinds = by_path[path]
        if not Path(path).exists():
            events.append((FileEvent.UNLINK, path))
        elif Change.added in kinds:
            events.append((FileEvent.ADD, path))
        else:
            events.append((FileEvent.CHANGE, path))
    return events


class ChangeWatcher:
    """Watches files through their parent directories.

    Watching the directories rather than the files means a watched file that
    is created after start-up is still reported. ``stability_ms`` is the quiet
    period watchfiles waits for before yielding a batch, so partial writes are
    not reported.
    """

    def __init__(
        self,
        paths: Sequence[Union[str, Path]],
        on_event: FileEventCallback,
        stability_ms: int = DEFAULT_STABILITY_MS,
        poll_ms: int = DEFAULT_POLL_MS
    ):
        self.paths = [Path(path) for path in paths]
        self.on_event = on_event
        self.stability_ms = stability_ms
        self.poll_ms = poll_ms
        self.logger = get_logger(self.__class__.__name__)

        self._watched = {str(path) for path in self.paths}
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def watch_dirs(self) -> List[Path]:
        """Existing parent directories of the watched files."""
        dirs = []
        for path in self.paths:
            parent = path.parent
            if parent in dirs:
                continue
            if not parent.is_dir():
                self.logger.warning("Watch directory does not exist", directory=str(parent))
                continue
            dirs.append(parent)
        return dirs

    def _filter(self, change: Change, path: str) -> bool:
        return str(Path(path)) in self._watched

    async def start(self) -> None:
        if self.running:
            return
        dirs = self.watch_dirs()
        if not dirs:
            self.logger.warning("Nothing to watch", files=[str(p) for p in self.paths])
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(dirs))
        self._task.add_done_callback(self._on_task_done)
        self.logger.info("Watching files", files=sorted(self._watched))

    async def _run(self, dirs: List[Path]) -> None:
        async for changes in awatch(
            *dirs,
            watch_filter=self._filter,
            debounce=self.stability_ms,
            step=self.poll_ms,
            stop_event=self._stop_event,
            recursive=False
        ):
            for event, path in classify_changes(changes, self._watched):
                self.logger.info("File event", change=event.value, path=path)
                try:
                    self.on_event(event, path)
                except Exception as e:
                    self.logger.error("File event handler failed", path=path, error=str(e))

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error("Watcher crashed", error=str(error) or type(error).__name__)

    async def close(self) -> None:
        """Stop watching; safe to call more than once."""
        if self._task is None:
            return
        task, self._task = self._task, None
        self._stop_event.set()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self.logger.warning("Watcher stopped with error", error=str(e))
        self.logger.info("Watcher closed")
