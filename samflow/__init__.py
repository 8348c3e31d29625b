"""
Samflow - Workflow Definition and Execution Engine

Declarative workflows of typed steps with:
- Sequential execution with retries, timeouts and conditional skips
- Cooperative pause, resume and cancel
- Scheduled, file, application, system, hotkey and webhook triggers
- Validation, optimization and drafting of definitions
"""

__version__ = "1.0.0"

from samflow.core.config import SamflowConfig
from samflow.engine import WorkflowExecutor
from samflow.errors import WorkflowError, WorkflowErrorKind
from samflow.manager import WorkflowManager
from samflow.types import (
    ConditionType,
    ExecutionStatus,
    TriggerType,
    WorkflowCondition,
    WorkflowDefinition,
    WorkflowExecutionResult,
    WorkflowStep,
    WorkflowStepResult,
    WorkflowStepType,
    WorkflowTrigger,
)
from samflow.values import ParameterValue

__all__ = [
    "SamflowConfig",
    "WorkflowExecutor",
    "WorkflowManager",
    "WorkflowError",
    "WorkflowErrorKind",
    "ParameterValue",
    "ConditionType",
    "ExecutionStatus",
    "TriggerType",
    "WorkflowCondition",
    "WorkflowDefinition",
    "WorkflowExecutionResult",
    "WorkflowStep",
    "WorkflowStepResult",
    "WorkflowStepType",
    "WorkflowTrigger",
    "__version__",
]
