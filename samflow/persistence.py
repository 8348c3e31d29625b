"""
Samflow Workflow Store

Storage collaborators for workflow definitions and execution history.
"""

from __future__ import annotations

import json
import threading
from urllib.parse import quote
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

import structlog

from samflow.errors import DecodingError
from samflow.types import WorkflowDefinition, WorkflowExecutionResult

logger = structlog.get_logger(__name__)


class WorkflowStore(ABC):
    """
    Load/save interface for definitions and history.

    Calls are synchronous from the engine's perspective. History is
    append-only: results are never rewritten once appended.
    """

    @abstractmethod
    def save(self, definition: WorkflowDefinition) -> None:
        """Store a definition, replacing any previous version."""
        pass

    @abstractmethod
    def load(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        """Load a definition by id."""
        pass

    @abstractmethod
    def list_all(self) -> List[WorkflowDefinition]:
        """List all stored definitions."""
        pass

    @abstractmethod
    def delete(self, workflow_id: str) -> bool:
        """Delete a definition. Returns True if it existed."""
        pass

    @abstractmethod
    def append_history(self, result: WorkflowExecutionResult) -> None:
        """Append an execution result to history."""
        pass

    @abstractmethod
    def list_history(self) -> List[WorkflowExecutionResult]:
        """List all history entries in append order."""
        pass


class InMemoryWorkflowStore(WorkflowStore):
    """Store kept entirely in memory."""

    def __init__(self):
        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._history: List[WorkflowExecutionResult] = []

    def save(self, definition: WorkflowDefinition) -> None:
        self._workflows[definition.id] = definition

    def load(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._workflows.get(workflow_id)

    def list_all(self) -> List[WorkflowDefinition]:
        return list(self._workflows.values())

    def delete(self, workflow_id: str) -> bool:
        return self._workflows.pop(workflow_id, None) is not None

    def append_history(self, result: WorkflowExecutionResult) -> None:
        self._history.append(result)

    def list_history(self) -> List[WorkflowExecutionResult]:
        return list(self._history)


class JsonFileWorkflowStore(WorkflowStore):
    """
    Store backed by JSON files.

    Layout:
    - <root>/workflows/<id>.json, one file per definition
    - <root>/history.jsonl, one execution result per line
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.workflows_dir = self.root / "workflows"
        self.history_file = self.root / "history.jsonl"
        self._lock = threading.Lock()
        self.workflows_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, workflow_id: str) -> Path:
        if not workflow_id:
            raise ValueError(f"Invalid workflow id: {workflow_id!r}")
        # Percent-encoding keeps distinct ids in distinct files
        return self.workflows_dir / f"{quote(workflow_id, safe='')}.json"

    def save(self, definition: WorkflowDefinition) -> None:
        path = self._path_for(definition.id)
        tmp = path.with_suffix(".json.tmp")
        with self._lock:
            with open(tmp, "w") as f:
                json.dump(definition.to_dict(), f, indent=2)
            tmp.replace(path)
        logger.debug("workflow_saved", workflow_id=definition.id, version=definition.version)

    def load(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        path = self._path_for(workflow_id)
        if not path.exists():
            return None
        with open(path) as f:
            definition = WorkflowDefinition.from_dict(json.load(f))
        if definition.id != workflow_id:
            logger.warning("workflow_id_mismatch", path=str(path), stored_id=definition.id)
            return None
        return definition

    def list_all(self) -> List[WorkflowDefinition]:
        definitions = []
        for path in sorted(self.workflows_dir.glob("*.json")):
            try:
                with open(path) as f:
                    definitions.append(WorkflowDefinition.from_dict(json.load(f)))
            except (OSError, ValueError, DecodingError) as e:
                logger.error("workflow_load_error", path=str(path), error=str(e))
        return definitions

    def delete(self, workflow_id: str) -> bool:
        path = self._path_for(workflow_id)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
        return True

    def append_history(self, result: WorkflowExecutionResult) -> None:
        line = json.dumps(result.to_dict())
        with self._lock:
            with open(self.history_file, "a") as f:
                f.write(line + "\n")

    def list_history(self) -> List[WorkflowExecutionResult]:
        if not self.history_file.exists():
            return []
        results = []
        with open(self.history_file) as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    results.append(WorkflowExecutionResult.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError, DecodingError) as e:
                    logger.error("history_load_error", line=lineno, error=str(e))
        return results
