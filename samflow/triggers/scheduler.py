"""
Samflow Workflow Scheduler

Owns armed triggers across workflows and fires executions.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, TYPE_CHECKING

import structlog

from samflow.core.config import SchedulerConfig
from samflow.errors import (
    DecodingError,
    InvalidScheduleError,
    WorkflowAlreadyRunningError,
    WorkflowNotFoundError,
)
from samflow.triggers.schedule import CronSchedule
from samflow.types import (
    TriggerType,
    WorkflowDefinition,
    WorkflowExecutionResult,
    WorkflowTrigger,
)
from samflow.values import coerce_parameters

if TYPE_CHECKING:
    from samflow.engine import WorkflowExecutor
    from samflow.triggers.monitors import EventSource

logger = structlog.get_logger(__name__)

# Parameter each event trigger type must carry
REQUIRED_PARAMETERS = {
    TriggerType.SCHEDULED: "schedule",
    TriggerType.FILE_CHANGED: "path",
    TriggerType.APP_LAUNCHED: "app_name",
    TriggerType.SYSTEM_EVENT: "event_type",
    TriggerType.HOTKEY: "key_combo",
}

_KEY_ALIASES = {
    "cmd": "command",
    "ctrl": "control",
    "opt": "option",
    "alt": "option",
    "return": "enter",
}


def normalize_hotkey(key_combo: str) -> str:
    """Canonical form of a key combination: lower-case, sorted, '+' joined."""
    keys = [k.strip().lower() for k in key_combo.split("+") if k.strip()]
    return "+".join(sorted(_KEY_ALIASES.get(k, k) for k in keys))


def _expand_path(path: str) -> str:
    return os.path.abspath(os.path.expanduser(path))


@dataclass
class ArmedTrigger:
    """Scheduler-side state for one enabled trigger."""
    workflow_id: str
    trigger: WorkflowTrigger
    schedule: Optional[CronSchedule] = None
    next_fire_at: Optional[datetime] = None
    last_fired_at: Optional[datetime] = None
    fire_count: int = 0
    rejected_count: int = 0

    @property
    def trigger_id(self) -> str:
        return self.trigger.id

    @property
    def type(self) -> TriggerType:
        return self.trigger.type

    @property
    def endpoint(self) -> str:
        return self.trigger.param_text("endpoint") or self.trigger.id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "workflow_id": self.workflow_id,
            "trigger_id": self.trigger_id,
            "type": self.type.value,
            "parameters": self.trigger.to_dict()["parameters"],
            "next_fire_at": self.next_fire_at.isoformat() if self.next_fire_at else None,
            "last_fired_at": self.last_fired_at.isoformat() if self.last_fired_at else None,
            "fire_count": self.fire_count,
            "rejected_count": self.rejected_count,
        }


@dataclass
class FireOutcome:
    """Result of asking the scheduler to fire a trigger."""
    accepted: bool
    workflow_id: Optional[str] = None
    trigger_id: Optional[str] = None
    reason: Optional[str] = None
    task: Optional["asyncio.Task[Optional[WorkflowExecutionResult]]"] = field(
        default=None, repr=False
    )

    async def wait(self) -> Optional[WorkflowExecutionResult]:
        """Wait for the fired run to finish."""
        if self.task is None:
            return None
        return await self.task


class WorkflowScheduler:
    """
    Manages workflow triggers.

    Features:
    - Cron schedules evaluated against wall-clock time
    - File change, app launch, system event and hotkey triggers
    - Webhook endpoints addressed by identifier
    - Manual invocation
    - Single in-flight run; concurrent fires are rejected

    The scheduler references workflows by id and looks definitions up at
    fire time, so edits take effect on the next run.
    """

    def __init__(
        self,
        executor: "WorkflowExecutor",
        lookup: Callable[[str], Optional[WorkflowDefinition]],
        config: Optional[SchedulerConfig] = None,
        sources: Optional[Sequence["EventSource"]] = None,
    ):
        self.executor = executor
        self.lookup = lookup
        self.config = config or SchedulerConfig()
        self.sources: List["EventSource"] = list(sources or [])

        self._armed: Dict[str, List[ArmedTrigger]] = {}
        self._webhooks: Dict[str, ArmedTrigger] = {}

        self._monitoring = False
        self._tick_task: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None

    # === Registration ===

    def register(self, definition: WorkflowDefinition) -> int:
        """
        Arm a workflow's enabled triggers, replacing earlier registrations.

        Every trigger is validated before any is armed.

        Raises:
            InvalidScheduleError: a trigger is malformed (bad cron expression,
                unknown timezone, missing parameter, endpoint conflict)

        Returns:
            Number of armed triggers
        """
        now = datetime.now()
        prepared: List[ArmedTrigger] = []

        for trigger in definition.triggers:
            if not trigger.is_enabled:
                continue
            prepared.append(self._prepare(definition.id, trigger, now))

        endpoints = set()
        for armed in prepared:
            if armed.type != TriggerType.WEBHOOK:
                continue
            existing = self._webhooks.get(armed.endpoint)
            if armed.endpoint in endpoints or (
                existing and existing.workflow_id != definition.id
            ):
                raise InvalidScheduleError(
                    f"Webhook endpoint '{armed.endpoint}' is already registered"
                )
            endpoints.add(armed.endpoint)

        self._disarm(definition.id)
        if not definition.is_enabled:
            logger.info("workflow_not_scheduled", workflow_id=definition.id, reason="disabled")
            self._refresh_sources()
            return 0

        self._armed[definition.id] = prepared
        for armed in prepared:
            if armed.type == TriggerType.WEBHOOK:
                self._webhooks[armed.endpoint] = armed

        self._refresh_sources()
        logger.info(
            "workflow_scheduled",
            workflow_id=definition.id,
            triggers=[a.type.value for a in prepared],
        )
        return len(prepared)

    def unregister(self, workflow_id: str) -> bool:
        """Disarm all triggers of a workflow."""
        removed = self._disarm(workflow_id)
        self._refresh_sources()
        if removed:
            logger.info("workflow_unscheduled", workflow_id=workflow_id)
        return removed

    def _prepare(self, workflow_id: str, trigger: WorkflowTrigger, now: datetime) -> ArmedTrigger:
        required = REQUIRED_PARAMETERS.get(trigger.type)
        if required and not trigger.param_text(required):
            raise InvalidScheduleError(
                f"Trigger '{trigger.id}' ({trigger.type.value}) is missing '{required}'"
            )

        armed = ArmedTrigger(workflow_id=workflow_id, trigger=trigger)
        if trigger.type == TriggerType.SCHEDULED:
            armed.schedule = CronSchedule(
                trigger.param_text("schedule"),
                timezone=trigger.param_text("timezone"),
            )
            armed.next_fire_at = armed.schedule.next_fire(now)
        return armed

    def _disarm(self, workflow_id: str) -> bool:
        armed = self._armed.pop(workflow_id, None)
        if not armed:
            return False
        for entry in armed:
            if entry.type == TriggerType.WEBHOOK:
                self._webhooks.pop(entry.endpoint, None)
        return True

    def _refresh_sources(self) -> None:
        if not self._monitoring:
            return
        for source in self.sources:
            source.refresh()

    def _triggers_of(self, trigger_type: TriggerType) -> List[ArmedTrigger]:
        return [
            armed
            for entries in self._armed.values()
            for armed in entries
            if armed.type == trigger_type
        ]

    def watched_paths(self) -> List[str]:
        return sorted({a.trigger.param_text("path") for a in self._triggers_of(TriggerType.FILE_CHANGED)})

    # === Lifecycle ===

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    async def start_monitoring(self) -> None:
        """Start the schedule loop and event sources. Idempotent."""
        if self._monitoring:
            return
        self._monitoring = True

        for source in self.sources:
            await source.start(self)

        self._tick_task = asyncio.create_task(self._schedule_loop())
        logger.info(
            "scheduler_started",
            workflows=len(self._armed),
            sources=[s.name for s in self.sources],
        )

    async def stop_monitoring(self) -> None:
        """Stop the schedule loop and release event sources. Idempotent."""
        if not self._monitoring:
            return
        self._monitoring = False

        if self._tick_task:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None

        for source in self.sources:
            await source.stop()

        logger.info("scheduler_stopped")

    async def _schedule_loop(self) -> None:
        """Background loop for scheduled triggers."""
        while True:
            await asyncio.sleep(self.config.tick_interval)
            try:
                await self.tick()
            except Exception as e:
                logger.error("schedule_loop_error", error=str(e))

    async def tick(self, now: Optional[datetime] = None) -> List[FireOutcome]:
        """
        Fire every scheduled trigger that is due.

        Each due trigger fires once and its next occurrence is computed
        from ``now``, so occurrences missed while suspended are skipped.
        """
        now = now or datetime.now()
        outcomes = []

        for armed in self._triggers_of(TriggerType.SCHEDULED):
            if armed.next_fire_at is None or now < armed.next_fire_at:
                continue

            scheduled_time = armed.next_fire_at
            armed.next_fire_at = armed.schedule.next_fire(now)
            outcomes.append(
                self._fire(armed, {"scheduled_time": scheduled_time.isoformat()})
            )

        return outcomes

    # === Event Entry Points ===

    async def handle_file_change(self, path: str) -> List[FireOutcome]:
        changed = _expand_path(path)
        outcomes = []
        for armed in self._triggers_of(TriggerType.FILE_CHANGED):
            watched = _expand_path(armed.trigger.param_text("path"))
            if changed == watched or changed.startswith(watched.rstrip(os.sep) + os.sep):
                outcomes.append(self._fire(armed, {"changed_path": changed}))
        return outcomes

    async def handle_app_launch(self, app_name: str) -> List[FireOutcome]:
        wanted = app_name.strip().lower()
        return [
            self._fire(armed, {"app_name": app_name})
            for armed in self._triggers_of(TriggerType.APP_LAUNCHED)
            if armed.trigger.param_text("app_name").strip().lower() == wanted
        ]

    async def handle_system_event(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> List[FireOutcome]:
        outcomes = []
        for armed in self._triggers_of(TriggerType.SYSTEM_EVENT):
            if armed.trigger.param_text("event_type") != event_type:
                continue
            variables = {"event_type": event_type}
            if payload:
                variables["event_payload"] = payload
            outcomes.append(self._fire(armed, variables))
        return outcomes

    async def handle_hotkey(self, key_combo: str) -> List[FireOutcome]:
        pressed = normalize_hotkey(key_combo)
        return [
            self._fire(armed, {"key_combo": pressed})
            for armed in self._triggers_of(TriggerType.HOTKEY)
            if normalize_hotkey(armed.trigger.param_text("key_combo")) == pressed
        ]

    async def handle_webhook(
        self,
        endpoint: str,
        payload: Optional[Dict[str, Any]] = None,
        secret: Optional[str] = None,
    ) -> FireOutcome:
        """
        Handle a webhook call routed by endpoint identifier.

        Top-level payload keys become initial variables, and the whole
        payload is also bound to ``webhook_payload``.
        """
        armed = self._webhooks.get(endpoint)
        if armed is None:
            logger.debug("webhook_not_found", endpoint=endpoint)
            return FireOutcome(accepted=False, reason="not_found")

        expected = armed.trigger.param_text("secret")
        if expected and secret != expected:
            logger.warning("webhook_secret_mismatch", endpoint=endpoint)
            return FireOutcome(
                accepted=False,
                workflow_id=armed.workflow_id,
                trigger_id=armed.trigger_id,
                reason="forbidden",
            )

        payload = payload or {}
        try:
            variables = coerce_parameters({**payload, "webhook_payload": payload})
        except DecodingError as e:
            logger.warning("webhook_payload_invalid", endpoint=endpoint, error=e.message)
            return FireOutcome(
                accepted=False,
                workflow_id=armed.workflow_id,
                trigger_id=armed.trigger_id,
                reason="invalid_payload",
            )

        return self._fire(armed, variables)

    async def run_now(
        self,
        workflow_id: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> WorkflowExecutionResult:
        """
        Explicitly run a workflow and wait for its result.

        Raises:
            WorkflowNotFoundError: unknown workflow id
            WorkflowAlreadyRunningError: another run is in flight
        """
        definition = self.lookup(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        if self._busy():
            raise WorkflowAlreadyRunningError()

        logger.info("workflow_run_requested", workflow_id=workflow_id)
        self._in_flight = asyncio.current_task()
        try:
            return await self.executor.execute(definition, variables)
        finally:
            self._in_flight = None

    # === Firing ===

    def _busy(self) -> bool:
        if self.executor.is_running:
            return True
        return self._in_flight is not None and not self._in_flight.done()

    def _fire(self, armed: ArmedTrigger, variables: Dict[str, Any]) -> FireOutcome:
        outcome = FireOutcome(
            accepted=False,
            workflow_id=armed.workflow_id,
            trigger_id=armed.trigger_id,
        )

        definition = self.lookup(armed.workflow_id)
        if definition is None or not definition.is_enabled:
            outcome.reason = "workflow_unavailable"
            logger.warning("trigger_target_missing", workflow_id=armed.workflow_id)
            return outcome

        if self._busy():
            armed.rejected_count += 1
            outcome.reason = WorkflowAlreadyRunningError().message
            logger.warning(
                "trigger_rejected",
                workflow_id=armed.workflow_id,
                trigger_id=armed.trigger_id,
                reason=outcome.reason,
            )
            return outcome

        armed.fire_count += 1
        armed.last_fired_at = datetime.now()

        run_variables = {
            "trigger_id": armed.trigger_id,
            "trigger_type": armed.type.value,
            **variables,
        }
        outcome.accepted = True
        outcome.task = asyncio.create_task(self._run(definition, run_variables))
        self._in_flight = outcome.task

        logger.info(
            "trigger_fired",
            workflow_id=armed.workflow_id,
            trigger_id=armed.trigger_id,
            type=armed.type.value,
        )
        return outcome

    async def _run(
        self,
        definition: WorkflowDefinition,
        variables: Dict[str, Any],
    ) -> Optional[WorkflowExecutionResult]:
        # Failures never disarm triggers
        try:
            return await self.executor.execute(definition, variables)
        except WorkflowAlreadyRunningError:
            logger.warning("trigger_rejected", workflow_id=definition.id, reason="workflow already running")
            return None
        except Exception as e:
            logger.error("triggered_run_error", workflow_id=definition.id, error=str(e))
            return None

    # === Introspection ===

    def list_triggers(self, workflow_id: Optional[str] = None) -> List[ArmedTrigger]:
        if workflow_id is not None:
            return list(self._armed.get(workflow_id, []))
        return [armed for entries in self._armed.values() for armed in entries]

    def next_fire_times(self) -> Dict[str, datetime]:
        return {
            armed.trigger_id: armed.next_fire_at
            for armed in self._triggers_of(TriggerType.SCHEDULED)
            if armed.next_fire_at
        }

    def webhook_endpoints(self) -> List[str]:
        return sorted(self._webhooks)

    def get_stats(self) -> Dict[str, Any]:
        """Get scheduler statistics."""
        by_type: Dict[str, int] = {}
        for armed in self.list_triggers():
            by_type[armed.type.value] = by_type.get(armed.type.value, 0) + 1

        return {
            "monitoring": self._monitoring,
            "workflows": len(self._armed),
            "triggers": sum(by_type.values()),
            "by_type": by_type,
            "webhooks": len(self._webhooks),
            "busy": self._busy(),
        }
