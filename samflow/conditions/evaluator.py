"""
Samflow Condition Evaluator

Evaluates workflow step conditions.
"""

from __future__ import annotations

import os
from typing import Awaitable, Callable, Dict, Optional, TYPE_CHECKING

import structlog

from samflow.capabilities import LocalStateProbe, StateProbe
from samflow.conditions.operators import (
    OperatorRegistry,
    contains,
    greater_than,
    less_than,
    values_equal,
)
from samflow.types import ConditionType, WorkflowCondition
from samflow.values import ParameterValue, ValueKind

if TYPE_CHECKING:
    from samflow.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


class ConditionEvaluator:
    """
    Evaluates workflow conditions.

    Features:
    - Variable resolution from the execution context
    - Type-aware comparison
    - File and application probes
    - Named custom operators

    Never raises: a condition that cannot be evaluated is false.
    """

    def __init__(
        self,
        probe: Optional[StateProbe] = None,
        operators: Optional[OperatorRegistry] = None,
    ):
        self.probe = probe or LocalStateProbe()
        self.operators = operators or OperatorRegistry()

        self._handlers: Dict[
            ConditionType,
            Callable[[WorkflowCondition, "ExecutionContext"], Awaitable[bool]],
        ] = {
            ConditionType.EQUALS: self._equals,
            ConditionType.NOT_EQUALS: self._not_equals,
            ConditionType.CONTAINS: self._compare(contains),
            ConditionType.GREATER_THAN: self._compare(greater_than),
            ConditionType.LESS_THAN: self._compare(less_than),
            ConditionType.FILE_EXISTS: self._file_exists,
            ConditionType.APP_RUNNING: self._app_running,
            ConditionType.CUSTOM: self._custom,
        }

    async def evaluate(
        self,
        condition: WorkflowCondition,
        context: "ExecutionContext",
    ) -> bool:
        """
        Evaluate a condition against a context.

        Args:
            condition: Condition to evaluate
            context: Execution context for variable resolution

        Returns:
            Boolean result
        """
        try:
            handler = self._handlers[condition.type]
            result = await handler(condition, context)

            logger.debug(
                "condition_evaluated",
                type=condition.type.value,
                variable=condition.variable,
                result=result,
            )
            return result

        except Exception as e:
            logger.error(
                "condition_evaluation_error",
                type=condition.type.value,
                variable=condition.variable,
                error=str(e),
            )
            return False

    # === Handlers ===

    async def _equals(self, condition: WorkflowCondition, context: "ExecutionContext") -> bool:
        actual = context.get(condition.variable)
        if actual is None:
            return False
        return values_equal(actual, condition.value)

    async def _not_equals(self, condition: WorkflowCondition, context: "ExecutionContext") -> bool:
        actual = context.get(condition.variable)
        if actual is None:
            return False
        return not values_equal(actual, condition.value)

    def _compare(self, op):
        async def handler(condition: WorkflowCondition, context: "ExecutionContext") -> bool:
            actual = context.get(condition.variable)
            if actual is None:
                return False
            return op(actual, condition.value)
        return handler

    async def _file_exists(self, condition: WorkflowCondition, context: "ExecutionContext") -> bool:
        path = self._probe_target(condition, context)
        return await self.probe.file_exists(os.path.expanduser(path))

    async def _app_running(self, condition: WorkflowCondition, context: "ExecutionContext") -> bool:
        name = self._probe_target(condition, context)
        return await self.probe.app_running(name)

    async def _custom(self, condition: WorkflowCondition, context: "ExecutionContext") -> bool:
        if not condition.operator:
            logger.warning("custom_condition_missing_operator", variable=condition.variable)
            return False

        func = self.operators.get(condition.operator)
        if func is None:
            logger.warning("unknown_condition_operator", operator=condition.operator)
            return False

        actual = context.get(condition.variable)
        if actual is None:
            return False
        return func(actual, condition.value)

    @staticmethod
    def _probe_target(condition: WorkflowCondition, context: "ExecutionContext") -> str:
        """Pick the path or app name a probe condition refers to."""
        value = condition.value
        if value.kind == ValueKind.STRING and value.value:
            return context.expand(value).as_text()
        resolved: Optional[ParameterValue] = context.get(condition.variable)
        if resolved is not None:
            return resolved.as_text()
        return condition.variable
