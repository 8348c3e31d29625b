"""
Shared fixtures for Samflow tests.

Capabilities are replaced by in-memory fakes that record their calls.
"""

from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from samflow.actions.executor import StepDispatcher
from samflow.capabilities import (
    ApplicationControl,
    FileOperations,
    LogNotifier,
    StateProbe,
    SystemQuery,
    UserPrompt,
)
from samflow.conditions.evaluator import ConditionEvaluator
from samflow.core.config import EngineConfig
from samflow.engine import WorkflowExecutor
from samflow.execution.history import ExecutionHistory


class RecordingFiles(FileOperations):
    """FileOperations fake that records every call."""

    def __init__(self):
        self.calls: List[tuple] = []

    async def copy(self, source: str, destination: str) -> str:
        self.calls.append(("copy", source, destination))
        return f"Copied {source} to {destination}"

    async def move(self, source: str, destination: str) -> str:
        self.calls.append(("move", source, destination))
        return f"Moved {source} to {destination}"

    async def delete(self, paths: List[str], move_to_trash: bool = True) -> str:
        self.calls.append(("delete", tuple(paths), move_to_trash))
        return f"Deleted {len(paths)} items"

    async def organize(self, path: str, strategy: str = "type") -> str:
        self.calls.append(("organize", path, strategy))
        return f"Organized {path}"


class RecordingApps(ApplicationControl):
    def __init__(self):
        self.calls: List[tuple] = []

    async def launch(self, app: str) -> str:
        self.calls.append(("launch", app))
        return f"Launched {app}"

    async def send_command(self, app: str, command: str) -> str:
        self.calls.append(("command", app, command))
        return f"{app}: {command}"


class StaticSystem(SystemQuery):
    def __init__(self, answers: Optional[Dict[str, str]] = None):
        self.answers = answers or {"cpu": "12.5"}

    async def query(self, query: str) -> str:
        return self.answers[query]


class ScriptedPrompt(UserPrompt):
    """Answers prompts from a fixed list, then falls back to the default."""

    def __init__(self, answers: Optional[List[str]] = None):
        self.answers = list(answers or [])
        self.prompts: List[str] = []

    async def request(self, prompt, default_value=None, timeout=None) -> str:
        self.prompts.append(prompt)
        if self.answers:
            return self.answers.pop(0)
        return default_value or ""


class FakeProbe(StateProbe):
    def __init__(self):
        self.files = set()
        self.apps = set()

    async def file_exists(self, path: str) -> bool:
        return path in self.files

    async def app_running(self, name: str) -> bool:
        return name in self.apps


FAST_ENGINE = EngineConfig(backoff_base=0.001, backoff_max=0.01, backoff_jitter=0)


@pytest.fixture
def files():
    return RecordingFiles()


@pytest.fixture
def apps():
    return RecordingApps()


@pytest.fixture
def prompt():
    return ScriptedPrompt()


@pytest.fixture
def notifier():
    return LogNotifier()


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def evaluator(probe):
    return ConditionEvaluator(probe=probe)


@pytest.fixture
def dispatcher(files, apps, prompt, notifier, evaluator):
    return StepDispatcher.with_defaults(
        files=files,
        apps=apps,
        system=StaticSystem(),
        prompt=prompt,
        notifier=notifier,
        evaluator=evaluator,
    )


@pytest.fixture
def history():
    return ExecutionHistory()


@pytest.fixture
def executor(dispatcher, evaluator, history):
    return WorkflowExecutor(
        dispatcher=dispatcher,
        evaluator=evaluator,
        history=history,
        config=FAST_ENGINE,
    )
