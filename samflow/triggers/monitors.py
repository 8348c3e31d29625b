"""
Samflow Event Sources

Observers that feed file, process, system and hotkey events to the scheduler.
"""

from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Set, TYPE_CHECKING

import psutil
import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

if TYPE_CHECKING:
    from samflow.triggers.scheduler import WorkflowScheduler

logger = structlog.get_logger(__name__)


class EventSource(ABC):
    """Base class for trigger event sources."""

    name = "event_source"

    @abstractmethod
    async def start(self, scheduler: "WorkflowScheduler") -> None:
        """Begin delivering events to the scheduler."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Release all subscriptions."""
        pass

    def refresh(self) -> None:
        """Re-sync subscriptions after triggers changed."""
        pass


# === File Changes ===


class _FileChangeHandler(FileSystemEventHandler):
    """Watchdog handler for file changes."""

    def __init__(self, monitor: "FileChangeMonitor", loop: asyncio.AbstractEventLoop):
        self.monitor = monitor
        self._loop = loop

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        if event.event_type not in ("created", "modified", "moved", "deleted"):
            return
        path = getattr(event, "dest_path", "") or event.src_path
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        self._schedule_change(path)

    def _schedule_change(self, path: str) -> None:
        """Schedule change handling on the event loop."""
        if self._loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self.monitor.deliver(path), self._loop)


class FileChangeMonitor(EventSource):
    """
    Watches the paths of file_changed triggers with watchdog.

    Events arrive on the observer thread and are handed to the scheduler's
    event loop.
    """

    name = "file_changes"

    def __init__(self, recursive: bool = True):
        self.recursive = recursive
        self._scheduler: Optional["WorkflowScheduler"] = None
        self._observer: Optional[Observer] = None
        self._watches: Dict[str, Any] = {}
        self._handler: Optional[_FileChangeHandler] = None

    async def start(self, scheduler: "WorkflowScheduler") -> None:
        self._scheduler = scheduler
        self._handler = _FileChangeHandler(self, asyncio.get_running_loop())
        self._observer = Observer()
        self._observer.start()
        self.refresh()
        logger.info("file_monitor_started", paths=list(self._watches))

    async def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
            self._observer = None
        self._watches.clear()
        self._scheduler = None
        logger.info("file_monitor_stopped")

    def refresh(self) -> None:
        if not self._observer or not self._scheduler:
            return

        wanted = {self._watch_root(p) for p in self._scheduler.watched_paths()}

        for path in list(self._watches):
            if path not in wanted:
                self._observer.unschedule(self._watches.pop(path))

        for path in wanted - set(self._watches):
            try:
                self._watches[path] = self._observer.schedule(
                    self._handler, path, recursive=self.recursive
                )
            except OSError as e:
                logger.warning("file_watch_failed", path=path, error=str(e))

    async def deliver(self, path: str) -> None:
        if self._scheduler is not None:
            await self._scheduler.handle_file_change(path)

    @staticmethod
    def _watch_root(path: str) -> str:
        """Watch directories directly and files through their parent."""
        expanded = os.path.abspath(os.path.expanduser(path))
        if os.path.isdir(expanded):
            return expanded
        return os.path.dirname(expanded)


# === Process Launches ===


class ProcessLaunchMonitor(EventSource):
    """Polls the process table and reports newly started applications."""

    name = "app_launches"

    def __init__(self, poll_interval: float = 2.0):
        self.poll_interval = poll_interval
        self._scheduler: Optional["WorkflowScheduler"] = None
        self._known: Set[str] = set()
        self._task: Optional[asyncio.Task] = None

    async def start(self, scheduler: "WorkflowScheduler") -> None:
        self._scheduler = scheduler
        self._known = await asyncio.to_thread(self.running_names)
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("process_monitor_started", known=len(self._known))

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._scheduler = None
        logger.info("process_monitor_stopped")

    @staticmethod
    def running_names() -> Set[str]:
        names = set()
        for proc in psutil.process_iter(["name"]):
            name = proc.info.get("name")
            if name:
                names.add(name)
        return names

    async def poll_once(self) -> Set[str]:
        """Compare against the previous snapshot and report new names."""
        current = await asyncio.to_thread(self.running_names)
        launched = current - self._known
        self._known = current
        if self._scheduler is not None:
            for name in sorted(launched):
                await self._scheduler.handle_app_launch(name)
        return launched

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.poll_once()
            except psutil.Error as e:
                logger.warning("process_poll_error", error=str(e))


# === In-process Events ===


class LocalEventSource(EventSource):
    """
    Event source for events published by the host application.

    Used for system events (wake, login, network changes) and global
    hotkeys, which the host observes and forwards here.
    """

    name = "local_events"

    def __init__(self):
        self._scheduler: Optional["WorkflowScheduler"] = None

    async def start(self, scheduler: "WorkflowScheduler") -> None:
        self._scheduler = scheduler

    async def stop(self) -> None:
        self._scheduler = None

    @property
    def is_active(self) -> bool:
        return self._scheduler is not None

    async def publish_system_event(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> int:
        if self._scheduler is None:
            logger.debug("event_dropped", event_type=event_type)
            return 0
        outcomes = await self._scheduler.handle_system_event(event_type, payload)
        return len(outcomes)

    async def press_hotkey(self, key_combo: str) -> int:
        if self._scheduler is None:
            logger.debug("hotkey_dropped", key_combo=key_combo)
            return 0
        outcomes = await self._scheduler.handle_hotkey(key_combo)
        return len(outcomes)
