"""
Samflow Errors

Error taxonomy for workflow definition, scheduling and execution.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class WorkflowErrorKind(str, Enum):
    """Kinds of workflow errors."""
    STEP_EXECUTION_FAILED = "step_execution_failed"
    CONDITION_NOT_MET = "condition_not_met"
    TIMEOUT_EXCEEDED = "timeout_exceeded"
    USER_CANCELLED = "user_cancelled"
    INVALID_PARAMETERS = "invalid_parameters"
    WORKFLOW_NOT_FOUND = "workflow_not_found"
    EXECUTION_CONTEXT_MISSING = "execution_context_missing"
    DEPENDENCY_NOT_MET = "dependency_not_met"
    INVALID_DEFINITION = "invalid_definition"
    WORKFLOW_ALREADY_RUNNING = "workflow_already_running"
    SCHEDULING_FAILED = "scheduling_failed"
    DECODING_FAILED = "decoding_failed"


class WorkflowError(Exception):
    """Base class for all workflow errors."""

    kind: WorkflowErrorKind = WorkflowErrorKind.STEP_EXECUTION_FAILED

    def __init__(self, message: str, kind: Optional[WorkflowErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class StepExecutionError(WorkflowError):
    """A step handler failed."""
    kind = WorkflowErrorKind.STEP_EXECUTION_FAILED


class StepTimeoutError(WorkflowError):
    """A step did not finish within its timeout."""
    kind = WorkflowErrorKind.TIMEOUT_EXCEEDED


class UserCancelledError(WorkflowError):
    """The run was cancelled."""
    kind = WorkflowErrorKind.USER_CANCELLED


class InvalidParametersError(WorkflowError):
    """A step parameter is missing or malformed."""
    kind = WorkflowErrorKind.INVALID_PARAMETERS


class WorkflowNotFoundError(WorkflowError):
    """No workflow with the requested id."""
    kind = WorkflowErrorKind.WORKFLOW_NOT_FOUND


class ExecutionContextMissingError(WorkflowError):
    """A handler was invoked outside of a run."""
    kind = WorkflowErrorKind.EXECUTION_CONTEXT_MISSING


class DependencyNotMetError(WorkflowError):
    """A referenced variable or step output is absent."""
    kind = WorkflowErrorKind.DEPENDENCY_NOT_MET


class InvalidDefinitionError(WorkflowError):
    """The workflow definition is structurally invalid."""
    kind = WorkflowErrorKind.INVALID_DEFINITION


class WorkflowAlreadyRunningError(WorkflowError):
    """Another workflow is already executing."""
    kind = WorkflowErrorKind.WORKFLOW_ALREADY_RUNNING

    def __init__(self, message: str = "workflow already running"):
        super().__init__(message)


class InvalidScheduleError(WorkflowError):
    """A trigger schedule could not be registered."""
    kind = WorkflowErrorKind.SCHEDULING_FAILED


class DecodingError(WorkflowError):
    """A serialized value could not be decoded."""
    kind = WorkflowErrorKind.DECODING_FAILED
