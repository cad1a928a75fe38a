"""
Polling file watcher.

Each poll takes a snapshot ``{path: (mtime_ns, size)}`` of the files under
the watched directory whose name matches the glob pattern, diffs it
against the previous snapshot and reports created / modified / deleted
files. A poller behaves the same on every platform and filesystem
(network mounts included) and is trivially testable: ``check()`` runs one
poll on demand.

Debounce is trailing: every event restarts the window, and when the window
elapses quietly the callback receives only the last event of the burst.
"""

from __future__ import annotations

import asyncio
import fnmatch
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path

from runspine.core.errors import PathNotFoundError
from runspine.core.logging import get_logger

logger = get_logger(__name__)


class FileChange(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileEvent:
    change: FileChange
    path: str

    @property
    def name(self) -> str:
        return Path(self.path).name

    def describe(self) -> str:
        return f"File: {self.name}, Change: {self.change.value}"


FileEventCallback = Callable[[FileEvent], Awaitable[None]]
Snapshot = dict[str, tuple[int, int]]


class FileWatcher:
    """Watches one directory for changes matching a glob pattern.

    Args:
        path: Directory to watch (must exist)
        pattern: ``fnmatch`` glob applied to file names
        include_subdirectories: Recurse into subdirectories
        on_event: Awaited for each (debounced) event
        debounce: Trailing debounce window, or None to report every event
        poll_interval: Seconds between polls when started
    """

    def __init__(
        self,
        path: str,
        pattern: str,
        on_event: FileEventCallback,
        include_subdirectories: bool = False,
        debounce: timedelta | None = None,
        poll_interval: float = 1.0,
    ):
        root = Path(path)
        if not root.is_dir():
            raise PathNotFoundError(path)

        self.path = root
        self.pattern = pattern or "*"
        self.include_subdirectories = include_subdirectories
        self.debounce = debounce
        self.poll_interval = poll_interval
        self._on_event = on_event
        self._snapshot: Snapshot = self._scan()
        self._task: asyncio.Task[None] | None = None
        self._flush_task: asyncio.Task[None] | None = None
        self._pending: FileEvent | None = None

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Lifecycle ────────────────────────────────────────────────

    def start(self) -> None:
        if self.is_active:
            return
        self._snapshot = self._scan()
        self._task = asyncio.create_task(self._loop(), name=f"runspine-watch-{self.path}")
        logger.debug("file_watch.started", path=str(self.path), pattern=self.pattern)

    async def stop(self) -> None:
        for task in (self._task, self._flush_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._flush_task = None
        self._pending = None
        logger.debug("file_watch.stopped", path=str(self.path))

    # ── Polling ──────────────────────────────────────────────────

    def poll(self) -> list[FileEvent]:
        """Diff the directory against the last snapshot."""
        current = self._scan()
        previous = self._snapshot
        self._snapshot = current

        events: list[FileEvent] = []
        for path, stat in current.items():
            if path not in previous:
                events.append(FileEvent(FileChange.CREATED, path))
            elif previous[path] != stat:
                events.append(FileEvent(FileChange.MODIFIED, path))
        for path in previous:
            if path not in current:
                events.append(FileEvent(FileChange.DELETED, path))
        return events

    async def check(self) -> list[FileEvent]:
        """Poll once and dispatch the resulting events."""
        events = self.poll()
        for event in events:
            await self._handle(event)
        return events

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.check()
            except OSError as e:
                logger.warning("file_watch.poll_failed", path=str(self.path), error=str(e))

    # ── Dispatch ─────────────────────────────────────────────────

    async def _handle(self, event: FileEvent) -> None:
        if self.debounce is None or self.debounce.total_seconds() <= 0:
            await self._deliver(event)
            return

        self._pending = event
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
        self._flush_task = asyncio.create_task(self._flush_after(self.debounce.total_seconds()))

    async def _flush_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # detached: events arriving during delivery open a new window
        self._flush_task = None
        event, self._pending = self._pending, None
        if event is not None:
            await self._deliver(event)

    async def _deliver(self, event: FileEvent) -> None:
        logger.debug("file_watch.event", change=event.change.value, path=event.path)
        try:
            await self._on_event(event)
        except Exception as e:
            logger.error("file_watch.callback_failed", path=event.path, error=str(e))

    def _scan(self) -> Snapshot:
        snapshot: Snapshot = {}
        for file in self._iter_files():
            try:
                stat = file.stat()
            except FileNotFoundError:
                continue
            snapshot[str(file)] = (stat.st_mtime_ns, stat.st_size)
        return snapshot

    def _iter_files(self) -> Iterator[Path]:
        candidates = self.path.rglob("*") if self.include_subdirectories else self.path.iterdir()
        for candidate in candidates:
            if candidate.is_file() and fnmatch.fnmatch(candidate.name, self.pattern):
                yield candidate


__all__ = ["FileChange", "FileEvent", "FileWatcher", "FileEventCallback"]
