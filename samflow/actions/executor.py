"""
Samflow Step Dispatcher

Dispatch table from step type to handler, plus the built-in handlers that
need no external capability.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Optional, TYPE_CHECKING, Union

import structlog

from samflow.errors import ExecutionContextMissingError, InvalidParametersError
from samflow.types import WorkflowStep, WorkflowStepType
from samflow.values import ParameterValue, ValueKind

if TYPE_CHECKING:
    from samflow.capabilities import (
        ApplicationControl,
        FileOperations,
        Notifier,
        SystemQuery,
        UserPrompt,
    )
    from samflow.conditions.evaluator import ConditionEvaluator
    from samflow.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)

Params = Mapping[str, ParameterValue]


class StepDispatcher:
    """
    Routes steps to handlers by step type.

    Handlers are registered per WorkflowStepType; new types register a
    handler without touching the executor loop.
    """

    def __init__(self):
        self._handlers: Dict[WorkflowStepType, "BaseStepHandler"] = {}

    @classmethod
    def with_defaults(
        cls,
        files: Optional["FileOperations"] = None,
        apps: Optional["ApplicationControl"] = None,
        system: Optional["SystemQuery"] = None,
        prompt: Optional["UserPrompt"] = None,
        notifier: Optional["Notifier"] = None,
        evaluator: Optional["ConditionEvaluator"] = None,
    ) -> "StepDispatcher":
        """
        Build a dispatcher with the built-in handlers.

        Capability-backed step types are only registered when their
        capability is given, except notifications (logged by default) and
        system queries (answered from psutil by default).
        """
        from samflow.actions.app import AppControlHandler
        from samflow.actions.file import FileOperationHandler
        from samflow.actions.notification import NotificationHandler
        from samflow.actions.prompt import UserInputHandler
        from samflow.actions.system import SystemCommandHandler
        from samflow.capabilities import LogNotifier, PsutilSystemQuery
        from samflow.conditions.evaluator import ConditionEvaluator

        dispatcher = cls()
        dispatcher.register_handler(WorkflowStepType.DELAY, DelayHandler())
        dispatcher.register_handler(WorkflowStepType.TEXT_PROCESSING, TextProcessingHandler())
        dispatcher.register_handler(
            WorkflowStepType.CONDITIONAL,
            ConditionalHandler(evaluator or ConditionEvaluator()),
        )
        dispatcher.register_handler(
            WorkflowStepType.NOTIFICATION,
            NotificationHandler(notifier or LogNotifier()),
        )
        dispatcher.register_handler(
            WorkflowStepType.SYSTEM_COMMAND,
            SystemCommandHandler(system or PsutilSystemQuery()),
        )
        if files is not None:
            dispatcher.register_handler(WorkflowStepType.FILE_OPERATION, FileOperationHandler(files))
        if apps is not None:
            dispatcher.register_handler(WorkflowStepType.APP_CONTROL, AppControlHandler(apps))
        if prompt is not None:
            dispatcher.register_handler(WorkflowStepType.USER_INPUT, UserInputHandler(prompt))
        return dispatcher

    def register_handler(
        self,
        step_type: WorkflowStepType,
        handler: "BaseStepHandler",
    ) -> None:
        """Register a step handler."""
        self._handlers[step_type] = handler
        logger.debug("handler_registered", step_type=step_type.value)

    def get_handler(self, step_type: WorkflowStepType) -> Optional["BaseStepHandler"]:
        return self._handlers.get(step_type)

    def supports(self, step_type: WorkflowStepType) -> bool:
        return step_type in self._handlers

    @property
    def step_types(self) -> List[WorkflowStepType]:
        return list(self._handlers)

    async def dispatch(
        self,
        step: WorkflowStep,
        params: Params,
        context: "ExecutionContext",
    ) -> Optional[str]:
        if context is None:
            raise ExecutionContextMissingError(f"Step '{step.name}' dispatched outside of a run")
        handler = self._handlers.get(step.type)
        if handler is None:
            raise InvalidParametersError(f"No handler for step type '{step.type.value}'")
        return await handler.execute(step, params, context)


class BaseStepHandler:
    """Base class for step handlers."""

    async def execute(
        self,
        step: WorkflowStep,
        params: Params,
        context: "ExecutionContext",
    ) -> Optional[str]:
        """Execute the step and return its output text."""
        raise NotImplementedError

    # === Parameter helpers ===

    @staticmethod
    def require_text(step: WorkflowStep, params: Params, name: str) -> str:
        value = params.get(name)
        if value is None:
            raise InvalidParametersError(f"Step '{step.name}' is missing parameter '{name}'")
        if value.kind in (ValueKind.LIST, ValueKind.MAP):
            raise InvalidParametersError(
                f"Step '{step.name}' parameter '{name}' must be a scalar"
            )
        return value.as_text()

    @staticmethod
    def optional_text(params: Params, name: str, default: Optional[str] = None) -> Optional[str]:
        value = params.get(name)
        return value.as_text() if value is not None else default

    @staticmethod
    def require_number(step: WorkflowStep, params: Params, name: str) -> Union[int, float]:
        value = params.get(name)
        if value is None:
            raise InvalidParametersError(f"Step '{step.name}' is missing parameter '{name}'")
        number = value.as_number()
        if number is None and value.kind == ValueKind.STRING:
            try:
                number = float(value.value)
            except ValueError:
                number = None
        if number is None:
            raise InvalidParametersError(
                f"Step '{step.name}' parameter '{name}' must be numeric"
            )
        return number

    @staticmethod
    def optional_bool(params: Params, name: str, default: bool) -> bool:
        value = params.get(name)
        if value is None:
            return default
        if value.kind == ValueKind.BOOL:
            return value.value
        return value.as_text().lower() in ("true", "yes", "1")

    @staticmethod
    def store_output(context: "ExecutionContext", params: Params, output: Any) -> None:
        """Bind output to the step's output_variable, if one is set."""
        target = params.get("output_variable")
        if target is not None and target.as_text():
            context.set(target.as_text(), output)


# === Built-in Handlers ===


class DelayHandler(BaseStepHandler):
    """Sleeps for `duration` seconds."""

    async def execute(self, step, params, context):
        duration = self.require_number(step, params, "duration")
        if duration < 0:
            raise InvalidParametersError(f"Step '{step.name}' duration must be >= 0")
        await asyncio.sleep(duration)
        return f"Delayed for {duration} seconds"


class TextProcessingHandler(BaseStepHandler):
    """Applies a string operation to `text`."""

    OPERATIONS = ("uppercase", "lowercase", "trim", "length", "replace")

    async def execute(self, step, params, context):
        text = self.require_text(step, params, "text")
        operation = self.require_text(step, params, "operation").lower()

        if operation == "uppercase":
            result: Any = text.upper()
        elif operation == "lowercase":
            result = text.lower()
        elif operation == "trim":
            result = text.strip()
        elif operation == "length":
            result = len(text)
        elif operation == "replace":
            find = self.require_text(step, params, "find")
            result = text.replace(find, self.optional_text(params, "replace", ""))
        else:
            raise InvalidParametersError(f"Unknown text operation: {operation}")

        self.store_output(context, params, result)
        return str(result)


class ConditionalHandler(BaseStepHandler):
    """Evaluates the step's condition and stores the outcome."""

    def __init__(self, evaluator: "ConditionEvaluator"):
        self.evaluator = evaluator

    async def execute(self, step, params, context):
        if step.condition is None:
            raise InvalidParametersError(f"Conditional step '{step.name}' has no condition")

        result = await self.evaluator.evaluate(step.condition, context)
        target = self.optional_text(params, "output_variable", "condition_result")
        context.set(target, result)
        return f"Condition evaluated to: {'true' if result else 'false'}"
