"""
Samflow Capabilities

Abstract collaborators invoked by step handlers, plus small local defaults.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import psutil
import structlog

logger = structlog.get_logger(__name__)


class FileOperations(ABC):
    """File system operations."""

    @abstractmethod
    async def copy(self, source: str, destination: str) -> str:
        pass

    @abstractmethod
    async def move(self, source: str, destination: str) -> str:
        pass

    @abstractmethod
    async def delete(self, paths: List[str], move_to_trash: bool = True) -> str:
        pass

    @abstractmethod
    async def organize(self, path: str, strategy: str = "type") -> str:
        pass


class ApplicationControl(ABC):
    """Application launching and scripting."""

    @abstractmethod
    async def launch(self, app: str) -> str:
        pass

    @abstractmethod
    async def send_command(self, app: str, command: str) -> str:
        pass


class SystemQuery(ABC):
    """Read-only queries about system state."""

    @abstractmethod
    async def query(self, query: str) -> str:
        pass


class UserPrompt(ABC):
    """Requests input from the user."""

    @abstractmethod
    async def request(
        self,
        prompt: str,
        default_value: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        pass


class Notifier(ABC):
    """Posts user-visible notifications."""

    @abstractmethod
    async def notify(self, title: str, message: str = "") -> None:
        pass


class StateProbe(ABC):
    """Answers file-existence and process-running questions for conditions."""

    @abstractmethod
    async def file_exists(self, path: str) -> bool:
        pass

    @abstractmethod
    async def app_running(self, name: str) -> bool:
        pass


# === Local Defaults ===


class LocalStateProbe(StateProbe):
    """StateProbe backed by the local file system and process table."""

    async def file_exists(self, path: str) -> bool:
        return Path(path).expanduser().exists()

    async def app_running(self, name: str) -> bool:
        return await asyncio.to_thread(self._process_running, name)

    @staticmethod
    def _process_running(name: str) -> bool:
        wanted = name.lower()
        for proc in psutil.process_iter(["name"]):
            proc_name = (proc.info.get("name") or "").lower()
            if proc_name == wanted or proc_name.startswith(wanted + "."):
                return True
        return False


class LogNotifier(Notifier):
    """Notifier that writes notifications to the structured log."""

    def __init__(self):
        self.sent: List[tuple] = []

    async def notify(self, title: str, message: str = "") -> None:
        self.sent.append((title, message))
        logger.info("notification", title=title, message=message)


class PsutilSystemQuery(SystemQuery):
    """SystemQuery answering common questions from psutil."""

    async def query(self, query: str) -> str:
        key = query.strip().lower()
        if key in ("cpu", "cpu_percent"):
            return str(psutil.cpu_percent(interval=None))
        if key in ("memory", "memory_percent"):
            return str(psutil.virtual_memory().percent)
        if key in ("disk", "disk_percent"):
            return str(psutil.disk_usage("/").percent)
        if key in ("processes", "process_count"):
            return str(len(psutil.pids()))
        if key == "boot_time":
            return str(psutil.boot_time())
        raise ValueError(f"Unsupported system query: {query}")
