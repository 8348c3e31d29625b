"""
Samflow Workflow Types

Core data structures for workflow definitions and execution results.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from samflow.errors import (
    DecodingError,
    InvalidDefinitionError,
    InvalidParametersError,
    WorkflowErrorKind,
)
from samflow.values import ParameterValue, coerce_parameters, parameters_to_json


# === Enums ===


class WorkflowStepType(str, Enum):
    """Types of workflow steps."""
    FILE_OPERATION = "file_operation"
    APP_CONTROL = "app_control"
    SYSTEM_COMMAND = "system_command"
    USER_INPUT = "user_input"
    CONDITIONAL = "conditional"
    DELAY = "delay"
    TEXT_PROCESSING = "text_processing"
    NOTIFICATION = "notification"


class ConditionType(str, Enum):
    """Types of step conditions."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    FILE_EXISTS = "file_exists"
    APP_RUNNING = "app_running"
    CUSTOM = "custom"


class TriggerType(str, Enum):
    """Types of workflow triggers."""
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    FILE_CHANGED = "file_changed"
    APP_LAUNCHED = "app_launched"
    SYSTEM_EVENT = "system_event"
    HOTKEY = "hotkey"
    WEBHOOK = "webhook"


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.SUCCEEDED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


def _enum(enum_cls, raw: Any, what: str):
    try:
        return enum_cls(raw)
    except ValueError as e:
        raise DecodingError(f"Unknown {what}: {raw!r}") from e


def _parse_time(raw: Optional[str]) -> Optional[datetime]:
    if raw is None:
        return None
    try:
        return datetime.fromisoformat(raw)
    except (TypeError, ValueError) as e:
        raise DecodingError(f"Invalid timestamp: {raw!r}") from e


def _get_str(data: Dict[str, Any], key: str, default: str = "") -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise DecodingError(f"'{key}' must be a string, got {value!r}")
    return value


def _get_bool(data: Dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise DecodingError(f"'{key}' must be a boolean, got {value!r}")
    return value


def _get_int(data: Dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodingError(f"'{key}' must be an integer, got {value!r}")
    return value


def _get_number(data: Dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodingError(f"'{key}' must be a number, got {value!r}")
    return float(value)


def _get_list(data: Dict[str, Any], key: str) -> List[Any]:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise DecodingError(f"'{key}' must be a list, got {value!r}")
    return value


def _new_id() -> str:
    return str(uuid.uuid4())


# === Definition Types ===


@dataclass(frozen=True)
class WorkflowCondition:
    """A guard condition evaluated against execution variables."""
    type: ConditionType
    variable: str
    value: ParameterValue = field(default_factory=lambda: ParameterValue.of(""))
    operator: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", ConditionType(self.type))
        object.__setattr__(self, "value", ParameterValue.of(self.value))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "type": self.type.value,
            "variable": self.variable,
            "value": self.value.to_json(),
        }
        if self.operator is not None:
            result["operator"] = self.operator
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowCondition":
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise DecodingError(f"Expected an object, got {type(data).__name__}")
        if "variable" not in data:
            raise DecodingError("Condition is missing 'variable'")
        return cls(
            type=_enum(ConditionType, data.get("type"), "condition type"),
            variable=_get_str(data, "variable"),
            value=ParameterValue.from_json(data.get("value", "")),
            operator=_get_str(data, "operator") if data.get("operator") is not None else None,
        )


@dataclass(frozen=True)
class WorkflowStep:
    """A single unit of work in a workflow."""
    id: str
    name: str
    type: WorkflowStepType
    parameters: Dict[str, ParameterValue] = field(default_factory=dict)
    continue_on_error: bool = False
    retry_count: int = 0
    timeout: float = 30.0
    condition: Optional[WorkflowCondition] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", WorkflowStepType(self.type))
        object.__setattr__(self, "parameters", coerce_parameters(self.parameters))
        if isinstance(self.condition, dict):
            object.__setattr__(self, "condition", WorkflowCondition.from_dict(self.condition))
        if self.retry_count < 0:
            raise InvalidParametersError(
                f"Step '{self.id}' retry_count must be >= 0, got {self.retry_count}"
            )
        if self.timeout <= 0:
            raise InvalidParametersError(
                f"Step '{self.id}' timeout must be > 0, got {self.timeout}"
            )

    def param(self, name: str) -> Optional[ParameterValue]:
        return self.parameters.get(name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "parameters": parameters_to_json(self.parameters),
            "continue_on_error": self.continue_on_error,
            "retry_count": self.retry_count,
            "timeout": self.timeout,
        }
        if self.condition:
            result["condition"] = self.condition.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowStep":
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise DecodingError(f"Expected an object, got {type(data).__name__}")
        condition = data.get("condition")
        return cls(
            id=_get_str(data, "id") or _new_id(),
            name=_get_str(data, "name"),
            type=_enum(WorkflowStepType, data.get("type"), "step type"),
            parameters=coerce_parameters(data.get("parameters", {})),
            continue_on_error=_get_bool(data, "continue_on_error", False),
            retry_count=_get_int(data, "retry_count", 0),
            timeout=_get_number(data, "timeout", 30.0),
            condition=WorkflowCondition.from_dict(condition) if condition else None,
        )


@dataclass(frozen=True)
class WorkflowTrigger:
    """Something that causes a workflow to run."""
    id: str
    type: TriggerType
    parameters: Dict[str, ParameterValue] = field(default_factory=dict)
    is_enabled: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", TriggerType(self.type))
        object.__setattr__(self, "parameters", coerce_parameters(self.parameters))

    def param_text(self, name: str) -> Optional[str]:
        value = self.parameters.get(name)
        return value.as_text() if value is not None else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "parameters": parameters_to_json(self.parameters),
            "is_enabled": self.is_enabled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowTrigger":
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise DecodingError(f"Expected an object, got {type(data).__name__}")
        return cls(
            id=_get_str(data, "id") or _new_id(),
            type=_enum(TriggerType, data.get("type"), "trigger type"),
            parameters=coerce_parameters(data.get("parameters", {})),
            is_enabled=_get_bool(data, "is_enabled", True),
        )


@dataclass(frozen=True)
class WorkflowDefinition:
    """
    A named, versioned sequence of steps.

    Definitions are immutable. Edits go through revise(), which returns a
    new definition with the next version number.
    """
    id: str = field(default_factory=_new_id)
    name: str = ""
    description: str = ""
    steps: Tuple[WorkflowStep, ...] = ()
    variables: Dict[str, ParameterValue] = field(default_factory=dict)
    triggers: Tuple[WorkflowTrigger, ...] = ()
    is_enabled: bool = True
    created_at: datetime = field(default_factory=datetime.now)
    modified_at: datetime = field(default_factory=datetime.now)
    version: int = 1
    tags: FrozenSet[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "triggers", tuple(self.triggers))
        object.__setattr__(self, "tags", frozenset(self.tags))
        object.__setattr__(self, "variables", coerce_parameters(self.variables))

        seen = set()
        for step in self.steps:
            if step.id in seen:
                raise InvalidDefinitionError(
                    f"Duplicate step id '{step.id}' in workflow '{self.name}'"
                )
            seen.add(step.id)
        if self.version < 1:
            raise InvalidDefinitionError(f"Invalid version {self.version}")

    def revise(self, **changes: Any) -> "WorkflowDefinition":
        """Return an edited copy with a bumped version."""
        changes.setdefault("modified_at", datetime.now())
        return replace(self, version=self.version + 1, **changes)

    def step_by_id(self, step_id: str) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def triggers_of(self, trigger_type: TriggerType) -> List[WorkflowTrigger]:
        return [t for t in self.triggers if t.type == trigger_type]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "steps": [s.to_dict() for s in self.steps],
            "variables": parameters_to_json(self.variables),
            "triggers": [t.to_dict() for t in self.triggers],
            "is_enabled": self.is_enabled,
            "created_at": self.created_at.isoformat(),
            "modified_at": self.modified_at.isoformat(),
            "version": self.version,
            "tags": sorted(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise DecodingError("Workflow definition must be an object")
        tags = _get_list(data, "tags")
        if not all(isinstance(tag, str) for tag in tags):
            raise DecodingError(f"'tags' must be a list of strings, got {tags!r}")

        now = datetime.now()
        return cls(
            id=_get_str(data, "id") or _new_id(),
            name=_get_str(data, "name"),
            description=_get_str(data, "description"),
            steps=tuple(WorkflowStep.from_dict(s) for s in _get_list(data, "steps")),
            variables=coerce_parameters(data.get("variables", {})),
            triggers=tuple(WorkflowTrigger.from_dict(t) for t in _get_list(data, "triggers")),
            is_enabled=_get_bool(data, "is_enabled", True),
            created_at=_parse_time(data.get("created_at")) or now,
            modified_at=_parse_time(data.get("modified_at")) or now,
            version=_get_int(data, "version", 1),
            tags=frozenset(tags),
        )


# === Execution Results ===


@dataclass(frozen=True)
class WorkflowStepResult:
    """Outcome of one step attempt."""
    step_id: str
    step_name: str
    success: bool
    start_time: datetime
    end_time: datetime
    output: Optional[str] = None
    error: Optional[str] = None
    retry_count: int = 0
    skipped: bool = False

    @property
    def duration(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "step_id": self.step_id,
            "step_name": self.step_name,
            "success": self.success,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration,
            "output": self.output,
            "error": self.error,
            "retry_count": self.retry_count,
            "skipped": self.skipped,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowStepResult":
        """Create from dictionary."""
        return cls(
            step_id=data["step_id"],
            step_name=data.get("step_name", ""),
            success=data["success"],
            start_time=_parse_time(data["start_time"]),
            end_time=_parse_time(data["end_time"]),
            output=data.get("output"),
            error=data.get("error"),
            retry_count=data.get("retry_count", 0),
            skipped=data.get("skipped", False),
        )


@dataclass(frozen=True)
class WorkflowExecutionResult:
    """Immutable record of one completed or aborted run."""
    execution_id: str
    workflow_id: str
    success: bool
    start_time: datetime
    end_time: datetime
    completed_steps: int
    total_steps: int
    status: ExecutionStatus
    error: Optional[str] = None
    error_kind: Optional[WorkflowErrorKind] = None
    step_results: Tuple[WorkflowStepResult, ...] = ()
    variables: Dict[str, ParameterValue] = field(default_factory=dict)
    workflow_version: int = 1

    @property
    def duration(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def failed_steps(self) -> List[WorkflowStepResult]:
        return [r for r in self.step_results if not r.success]

    def results_for(self, step_id: str) -> List[WorkflowStepResult]:
        return [r for r in self.step_results if r.step_id == step_id]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "workflow_version": self.workflow_version,
            "success": self.success,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration,
            "completed_steps": self.completed_steps,
            "total_steps": self.total_steps,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "step_results": [r.to_dict() for r in self.step_results],
            "variables": parameters_to_json(self.variables),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowExecutionResult":
        """Create from dictionary."""
        kind = data.get("error_kind")
        return cls(
            execution_id=data["execution_id"],
            workflow_id=data["workflow_id"],
            workflow_version=data.get("workflow_version", 1),
            success=data["success"],
            status=_enum(ExecutionStatus, data.get("status", "failed"), "status"),
            start_time=_parse_time(data["start_time"]),
            end_time=_parse_time(data["end_time"]),
            completed_steps=data.get("completed_steps", 0),
            total_steps=data.get("total_steps", 0),
            error=data.get("error"),
            error_kind=_enum(WorkflowErrorKind, kind, "error kind") if kind else None,
            step_results=tuple(
                WorkflowStepResult.from_dict(r) for r in data.get("step_results", [])
            ),
            variables=coerce_parameters(data.get("variables", {})),
        )
