"""
Samflow Workflow Manager

Facade composing storage, execution, scheduling, history and building.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence

import structlog

from samflow import codec
from samflow.builder.builder import BuildResult, WorkflowBuilder
from samflow.builder.completion import CompletionClient
from samflow.core.config import SamflowConfig
from samflow.engine import WorkflowExecutor
from samflow.errors import InvalidDefinitionError, InvalidScheduleError, WorkflowNotFoundError
from samflow.execution.context import ExecutionContext
from samflow.execution.history import ExecutionHistory
from samflow.persistence import InMemoryWorkflowStore, JsonFileWorkflowStore, WorkflowStore
from samflow.templates.manager import TemplateManager
from samflow.triggers.monitors import (
    EventSource,
    FileChangeMonitor,
    LocalEventSource,
    ProcessLaunchMonitor,
)
from samflow.triggers.scheduler import WorkflowScheduler
from samflow.types import (
    ExecutionStatus,
    TriggerType,
    WorkflowDefinition,
    WorkflowExecutionResult,
    WorkflowStep,
    WorkflowStepResult,
    WorkflowStepType,
    WorkflowTrigger,
)

logger = structlog.get_logger(__name__)


class LogLevel(str, Enum):
    """Levels of execution log entries."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class ExecutionLogEntry:
    """A human-readable line about the current run."""
    message: str
    level: LogLevel
    step_index: int = -1
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "level": self.level.value,
            "step_index": self.step_index,
            "timestamp": self.timestamp.isoformat(),
        }


class WorkflowManager:
    """
    Entry point for applications embedding the engine.

    Features:
    - Workflow CRUD with copy-on-write versioning
    - Trigger registration kept in sync with stored definitions
    - Manual runs with single-run enforcement
    - Import/export
    - Drafting from descriptions and templates
    - Execution log for display
    """

    def __init__(
        self,
        store: Optional[WorkflowStore] = None,
        executor: Optional[WorkflowExecutor] = None,
        config: Optional[SamflowConfig] = None,
        completion_client: Optional[CompletionClient] = None,
        sources: Optional[Sequence[EventSource]] = None,
        log_limit: int = 500,
    ):
        self.config = config or SamflowConfig()
        self.store = store or self._default_store()
        self.history = ExecutionHistory(self.store, self.config.storage.history_limit)

        self.executor = executor or WorkflowExecutor(config=self.config.engine)
        if self.executor.history is None:
            self.executor.history = self.history

        self.scheduler = WorkflowScheduler(
            self.executor,
            self.get,
            config=self.config.scheduler,
            sources=self._default_sources() if sources is None else sources,
        )
        self.builder = WorkflowBuilder(
            client=completion_client,
            config=self.config.builder,
            supported_types=self.executor.dispatcher.step_types,
            operators=self.executor.evaluator.operators,
        )
        self.templates = TemplateManager()

        self.execution_log: Deque[ExecutionLogEntry] = deque(maxlen=log_limit)
        self._step_index: Dict[str, int] = {}
        self.executor.on_execution_started(self._log_started)
        self.executor.on_step_completed(self._log_step)
        self.executor.on_execution_completed(self._log_completed)

        self._initialized = False

    def _default_store(self) -> WorkflowStore:
        if self.config.storage.backend == "json":
            return JsonFileWorkflowStore(self.config.storage.data_dir)
        return InMemoryWorkflowStore()

    def _default_sources(self) -> List[EventSource]:
        return [
            FileChangeMonitor(recursive=self.config.scheduler.watch_recursive),
            ProcessLaunchMonitor(poll_interval=self.config.scheduler.process_poll_interval),
            LocalEventSource(),
        ]

    async def initialize(self, start_monitoring: bool = False) -> None:
        """Load stored workflows and arm their triggers."""
        if self._initialized:
            return

        self.history.load()
        for definition in self.store.list_all():
            try:
                self.scheduler.register(definition)
            except InvalidScheduleError as e:
                logger.error("workflow_schedule_invalid", workflow_id=definition.id, error=e.message)

        if start_monitoring:
            await self.scheduler.start_monitoring()

        self._initialized = True
        logger.info("workflow_manager_initialized", workflows=len(self.store.list_all()))

    async def shutdown(self) -> None:
        await self.scheduler.stop_monitoring()
        self._initialized = False
        logger.info("workflow_manager_shutdown")

    # === Workflow Management ===

    def create(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """
        Store a new workflow and arm its triggers.

        Raises:
            InvalidDefinitionError: a workflow with this id exists
            InvalidScheduleError: a trigger is malformed
        """
        if self.store.load(definition.id) is not None:
            raise InvalidDefinitionError(f"Workflow already exists: {definition.id}")

        self.scheduler.register(definition)
        self.store.save(definition)
        logger.info("workflow_created", workflow_id=definition.id, name=definition.name)
        return definition

    def update(self, workflow_id: str, **changes: Any) -> WorkflowDefinition:
        """Store an edited copy as the next version."""
        current = self._require(workflow_id)
        if "id" in changes or "version" in changes:
            raise InvalidDefinitionError("id and version cannot be edited")

        revised = current.revise(**changes)
        self.scheduler.register(revised)
        self.store.save(revised)
        logger.info("workflow_updated", workflow_id=workflow_id, version=revised.version)
        return revised

    def delete(self, workflow_id: str) -> None:
        self._require(workflow_id)
        self.scheduler.unregister(workflow_id)
        self.store.delete(workflow_id)
        logger.info("workflow_deleted", workflow_id=workflow_id)

    def duplicate(self, workflow_id: str) -> WorkflowDefinition:
        """Copy a workflow under a new id and a "Copy" name suffix."""
        original = self._require(workflow_id)
        now = datetime.now()

        triggers = []
        for trigger in original.triggers:
            parameters = dict(trigger.parameters)
            # The copy gets its own webhook endpoint
            parameters.pop("endpoint", None)
            triggers.append(WorkflowTrigger(
                id=str(uuid.uuid4()),
                type=trigger.type,
                parameters=parameters,
                is_enabled=trigger.is_enabled,
            ))

        copy = replace(
            original,
            id=str(uuid.uuid4()),
            name=f"{original.name} Copy",
            triggers=tuple(triggers),
            created_at=now,
            modified_at=now,
            version=1,
        )
        return self.create(copy)

    def set_enabled(self, workflow_id: str, enabled: bool) -> WorkflowDefinition:
        return self.update(workflow_id, is_enabled=enabled)

    def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self.store.load(workflow_id)

    def list(
        self,
        tag: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[WorkflowDefinition]:
        """List workflows with filters."""
        workflows = self.store.list_all()

        if tag:
            workflows = [w for w in workflows if tag in w.tags]

        if search:
            query = search.lower()
            workflows = [
                w for w in workflows
                if query in w.name.lower() or query in w.description.lower()
            ]

        return sorted(workflows, key=lambda w: w.name.lower())

    def _require(self, workflow_id: str) -> WorkflowDefinition:
        definition = self.store.load(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        return definition

    # === Execution ===

    @property
    def is_executing(self) -> bool:
        return self.executor.is_running

    @property
    def current_execution(self) -> Optional[ExecutionContext]:
        return self.executor.current_context

    async def run(
        self,
        workflow_id: str,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowExecutionResult:
        """
        Run a workflow now and wait for the result.

        Raises:
            WorkflowNotFoundError: unknown workflow id
            WorkflowAlreadyRunningError: another run is in flight
        """
        return await self.scheduler.run_now(workflow_id, dict(variables or {}))

    def pause(self) -> bool:
        return self.executor.pause()

    def resume(self) -> bool:
        return self.executor.resume()

    def cancel(self) -> bool:
        return self.executor.cancel()

    def history_for(self, workflow_id: str, limit: int = 20) -> List[WorkflowExecutionResult]:
        return self.history.list(workflow_id=workflow_id, limit=limit)

    # === Import / Export ===

    def export_workflow(self, workflow_id: str) -> str:
        return codec.export_workflow(self._require(workflow_id))

    def export_all(self) -> str:
        return codec.export_bundle(self.list())

    def import_workflow(self, text: str) -> List[WorkflowDefinition]:
        """Import one definition or a bundle. Conflicting ids get fresh ones."""
        imported = []
        for definition in codec.import_bundle(text):
            if self.store.load(definition.id) is not None:
                definition = replace(definition, id=str(uuid.uuid4()))
            imported.append(self.create(definition))
        logger.info("workflows_imported", count=len(imported))
        return imported

    # === Building ===

    async def create_from_description(
        self,
        description: str,
        context: Optional[Dict[str, Any]] = None,
        save: bool = True,
    ) -> BuildResult:
        """Draft a workflow; store it when the draft is valid."""
        result = await self.builder.build_from_description(description, context)
        if save and result.valid:
            self.create(result.definition)
        return result

    def create_from_template(
        self,
        template_id: str,
        values: Optional[Mapping[str, Any]] = None,
        name: Optional[str] = None,
    ) -> WorkflowDefinition:
        template = self.templates.get(template_id)
        if template is None:
            raise WorkflowNotFoundError(f"Template not found: {template_id}")
        return self.create(self.builder.build_from_template(template, values, name))

    def install_samples(self) -> List[WorkflowDefinition]:
        return [self.create(d) for d in sample_workflows()]

    # === Execution Log ===

    def _append_log(self, message: str, level: LogLevel, step_index: int = -1) -> None:
        self.execution_log.append(ExecutionLogEntry(message, level, step_index))

    def _log_started(self, definition: WorkflowDefinition, context: ExecutionContext) -> None:
        self.execution_log.clear()
        self._step_index = {step.id: i for i, step in enumerate(definition.steps)}
        self._append_log(f"Starting workflow: {definition.name}", LogLevel.INFO)

    def _log_step(self, step: WorkflowStep, result: WorkflowStepResult) -> None:
        index = self._step_index.get(step.id, -1)
        if result.skipped:
            self._append_log(f"Skipped: {step.name}", LogLevel.WARNING, index)
        elif result.success:
            self._append_log(f"Completed: {step.name}", LogLevel.SUCCESS, index)
        else:
            self._append_log(f"Failed: {step.name} - {result.error}", LogLevel.ERROR, index)

    def _log_completed(self, result: WorkflowExecutionResult) -> None:
        if result.success:
            self._append_log("Workflow completed successfully", LogLevel.SUCCESS)
        elif result.status == ExecutionStatus.CANCELLED:
            self._append_log("Workflow cancelled", LogLevel.WARNING)
        else:
            self._append_log(f"Workflow failed: {result.error}", LogLevel.ERROR)

    # === Statistics ===

    def get_stats(self) -> Dict[str, Any]:
        """Get manager statistics."""
        workflows = self.store.list_all()
        return {
            "workflows": len(workflows),
            "enabled": sum(1 for w in workflows if w.is_enabled),
            "executor": self.executor.get_stats(),
            "scheduler": self.scheduler.get_stats(),
            "history": self.history.get_stats(),
            "templates": len(self.templates.list()),
        }


def sample_workflows() -> List[WorkflowDefinition]:
    """Starter workflows offered to new users."""
    cleanup = WorkflowDefinition(
        name="Daily Cleanup",
        description="Clean up Downloads folder and empty trash",
        steps=(
            WorkflowStep(
                id="organize_downloads",
                name="Organize Downloads folder",
                type=WorkflowStepType.FILE_OPERATION,
                parameters={"operation": "organize", "path": "~/Downloads"},
                retry_count=2,
                timeout=60.0,
            ),
            WorkflowStep(
                id="empty_trash",
                name="Empty trash",
                type=WorkflowStepType.FILE_OPERATION,
                parameters={"operation": "delete", "path": "~/.Trash", "move_to_trash": False},
                continue_on_error=True,
                timeout=60.0,
            ),
            WorkflowStep(
                id="notify",
                name="Show completion notification",
                type=WorkflowStepType.NOTIFICATION,
                parameters={"title": "Daily Cleanup", "message": "Daily cleanup completed"},
            ),
        ),
        triggers=(WorkflowTrigger(id=str(uuid.uuid4()), type=TriggerType.MANUAL),),
        tags={"cleanup", "file-management"},
    )

    backup = WorkflowDefinition(
        name="Document Backup",
        description="Backup important documents to external drive",
        steps=(
            WorkflowStep(
                id="backup_documents",
                name="Backup Documents folder",
                type=WorkflowStepType.FILE_OPERATION,
                parameters={
                    "operation": "copy",
                    "source": "~/Documents",
                    "destination": "/Volumes/Backup",
                },
                retry_count=2,
                timeout=300.0,
            ),
            WorkflowStep(
                id="notify",
                name="Show completion notification",
                type=WorkflowStepType.NOTIFICATION,
                parameters={"title": "Document Backup", "message": "Document backup completed"},
            ),
        ),
        triggers=(WorkflowTrigger(id=str(uuid.uuid4()), type=TriggerType.MANUAL),),
        tags={"backup"},
    )

    return [cleanup, backup]
