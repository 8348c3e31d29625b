"""
Samflow Workflow Validator

Local, side-effect free checks over workflow definitions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

import structlog

from samflow.conditions.operators import OperatorRegistry, greater_than, less_than, values_equal
from samflow.core.config import BuilderConfig
from samflow.triggers.schedule import validate_cron
from samflow.triggers.scheduler import REQUIRED_PARAMETERS as TRIGGER_PARAMETERS
from samflow.types import (
    ConditionType,
    TriggerType,
    WorkflowCondition,
    WorkflowDefinition,
    WorkflowStep,
    WorkflowStepType,
)
from samflow.values import ParameterValue, ValueKind

logger = structlog.get_logger(__name__)

PLACEHOLDER = re.compile(r'\{\{\s*([^}]+?)\s*\}\}')

# Variables bound by the scheduler when a trigger of that type fires
TRIGGER_VARIABLES = {
    TriggerType.SCHEDULED: {"scheduled_time"},
    TriggerType.FILE_CHANGED: {"changed_path"},
    TriggerType.APP_LAUNCHED: {"app_name"},
    TriggerType.SYSTEM_EVENT: {"event_type", "event_payload"},
    TriggerType.HOTKEY: {"key_combo"},
    TriggerType.WEBHOOK: {"webhook_payload"},
}
RUNTIME_VARIABLES = {"trigger_id", "trigger_type"}

FILE_OPERATION_PARAMETERS = {
    "copy": ("source", "destination"),
    "move": ("source", "destination"),
    "delete": (),
    "organize": ("path",),
}
TEXT_OPERATIONS = {"uppercase", "lowercase", "trim", "length", "replace"}

REQUIRED_PARAMETERS = {
    WorkflowStepType.FILE_OPERATION: ("operation",),
    WorkflowStepType.APP_CONTROL: ("command", "app"),
    WorkflowStepType.SYSTEM_COMMAND: ("query",),
    WorkflowStepType.USER_INPUT: ("prompt",),
    WorkflowStepType.CONDITIONAL: (),
    WorkflowStepType.DELAY: ("duration",),
    WorkflowStepType.TEXT_PROCESSING: ("text", "operation"),
    WorkflowStepType.NOTIFICATION: ("title",),
}


@dataclass
class ValidationIssue:
    """A named validation finding."""
    code: str
    message: str
    step_id: Optional[str] = None
    severity: str = "error"  # error, warning

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "step_id": self.step_id,
            "severity": self.severity,
        }


@dataclass
class ValidationResult:
    """Result of workflow validation."""
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    def codes(self) -> Set[str]:
        return {i.code for i in self.issues}

    def warning_codes(self) -> Set[str]:
        return {w.code for w in self.warnings}

    def merged(self, extra: Iterable[ValidationIssue]) -> "ValidationResult":
        issues = list(extra) + self.issues
        return ValidationResult(valid=not issues, issues=issues, warnings=list(self.warnings))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "issues": [i.to_dict() for i in self.issues],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def step_outputs(step: WorkflowStep) -> Set[str]:
    """Variables a step binds when it runs."""
    outputs = set()
    target = step.param("output_variable")
    if target is not None and target.kind == ValueKind.STRING and target.value:
        outputs.add(target.value)
    if step.type == WorkflowStepType.USER_INPUT:
        variable = step.param("input_variable")
        outputs.add(variable.as_text() if variable is not None else "user_input")
    if step.type == WorkflowStepType.CONDITIONAL and target is None:
        outputs.add("condition_result")
    return outputs


def step_references(step: WorkflowStep) -> Set[str]:
    """Root variable names a step reads."""
    refs: Set[str] = set()
    for value in step.parameters.values():
        _collect_refs(value, refs)
    if step.condition is not None:
        refs |= condition_references(step.condition)
    return refs


def condition_references(condition: WorkflowCondition) -> Set[str]:
    refs: Set[str] = set()
    _collect_refs(condition.value, refs)
    if condition.type in (ConditionType.FILE_EXISTS, ConditionType.APP_RUNNING):
        # Probe conditions name their target directly when value is given
        if condition.value.kind == ValueKind.STRING and condition.value.value:
            return refs
        if not _looks_like_variable(condition.variable):
            return refs
    if condition.variable:
        refs.add(_root(condition.variable))
    return refs


def _collect_refs(value: ParameterValue, refs: Set[str]) -> None:
    if value.kind == ValueKind.STRING:
        refs.update(_root(m) for m in PLACEHOLDER.findall(value.value))
    elif value.kind == ValueKind.LIST:
        for item in value.value:
            _collect_refs(item, refs)
    elif value.kind == ValueKind.MAP:
        for item in value.value.values():
            _collect_refs(item, refs)


def _root(name: str) -> str:
    return name.strip().split(".", 1)[0]


def _looks_like_variable(name: str) -> bool:
    return bool(re.fullmatch(r"[A-Za-z_][\w.]*", name or ""))


class WorkflowValidator:
    """
    Validates workflow definitions.

    Checks:
    - Required step parameters
    - Variable references against definitions and earlier outputs
    - Circular dependencies between step outputs
    - Condition well-formedness
    - Timeout and retry bounds
    - Trigger configuration
    """

    def __init__(
        self,
        config: Optional[BuilderConfig] = None,
        supported_types: Optional[Iterable[WorkflowStepType]] = None,
        operators: Optional[OperatorRegistry] = None,
    ):
        self.config = config or BuilderConfig()
        self.supported_types = set(supported_types) if supported_types is not None else set(WorkflowStepType)
        self.operators = operators or OperatorRegistry()

    def validate(
        self,
        definition: WorkflowDefinition,
        known_variables: Iterable[str] = (),
    ) -> ValidationResult:
        """
        Validate a workflow definition.

        Args:
            definition: Workflow to validate
            known_variables: Extra names the caller will bind at run time

        Returns:
            ValidationResult with issues and warnings
        """
        issues: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        if not definition.steps:
            warnings.append(ValidationIssue("no_steps", "Workflow has no steps", severity="warning"))

        for step in definition.steps:
            issues.extend(self._validate_step(step))
            warnings.extend(self._step_warnings(step))

        issues.extend(self._validate_triggers(definition))

        ref_issues, ref_warnings = self._validate_references(definition, set(known_variables))
        issues.extend(ref_issues)
        warnings.extend(ref_warnings)

        issues.extend(self._detect_cycles(definition))
        warnings.extend(self._find_unreachable_steps(definition))

        if len(definition.steps) > self.config.max_steps_warning:
            warnings.append(ValidationIssue(
                "performance_impact",
                f"Workflow has {len(definition.steps)} steps",
                severity="warning",
            ))

        result = ValidationResult(valid=not issues, issues=issues, warnings=warnings)
        logger.debug(
            "workflow_validated",
            workflow_id=definition.id,
            issues=len(issues),
            warnings=len(warnings),
        )
        return result

    # === Steps ===

    def _validate_step(self, step: WorkflowStep) -> List[ValidationIssue]:
        issues = []

        if step.type not in self.supported_types:
            issues.append(ValidationIssue(
                "unsupported_step_type",
                f"Step type '{step.type.value}' is not supported",
                step.id,
            ))

        for name in REQUIRED_PARAMETERS.get(step.type, ()):
            if name not in step.parameters:
                issues.append(ValidationIssue(
                    "missing_parameter",
                    f"Step '{step.name}' is missing required parameter '{name}'",
                    step.id,
                ))

        issues.extend(self._validate_parameter_values(step))

        if step.type == WorkflowStepType.CONDITIONAL and step.condition is None:
            issues.append(ValidationIssue(
                "invalid_condition",
                f"Conditional step '{step.name}' has no condition",
                step.id,
            ))
        if step.condition is not None:
            issues.extend(self._validate_condition(step, step.condition))

        if step.timeout > self.config.max_timeout:
            issues.append(ValidationIssue(
                "invalid_timeout",
                f"Step '{step.name}' timeout {step.timeout}s exceeds {self.config.max_timeout}s",
                step.id,
            ))
        if step.retry_count > self.config.max_retry_count:
            issues.append(ValidationIssue(
                "invalid_retry_count",
                f"Step '{step.name}' retry count {step.retry_count} exceeds {self.config.max_retry_count}",
                step.id,
            ))

        return issues

    def _validate_parameter_values(self, step: WorkflowStep) -> List[ValidationIssue]:
        issues = []

        def invalid(message: str) -> None:
            issues.append(ValidationIssue("invalid_parameter", message, step.id))

        if step.type == WorkflowStepType.FILE_OPERATION and "operation" in step.parameters:
            operation = step.parameters["operation"].as_text().lower()
            if operation not in FILE_OPERATION_PARAMETERS:
                invalid(f"Unknown file operation '{operation}'")
            else:
                for name in FILE_OPERATION_PARAMETERS[operation]:
                    if name not in step.parameters:
                        issues.append(ValidationIssue(
                            "missing_parameter",
                            f"File operation '{operation}' requires '{name}'",
                            step.id,
                        ))
                if operation == "delete" and not ({"files", "path"} & set(step.parameters)):
                    issues.append(ValidationIssue(
                        "missing_parameter",
                        "File operation 'delete' requires 'files' or 'path'",
                        step.id,
                    ))

        if step.type == WorkflowStepType.DELAY and "duration" in step.parameters:
            duration = step.parameters["duration"]
            if duration.kind == ValueKind.STRING and PLACEHOLDER.fullmatch(duration.value.strip()):
                pass
            elif duration.as_number() is None or duration.as_number() < 0:
                invalid(f"Delay duration must be a non-negative number, got {duration.as_text()!r}")

        if step.type == WorkflowStepType.TEXT_PROCESSING and "operation" in step.parameters:
            operation = step.parameters["operation"].as_text().lower()
            if operation not in TEXT_OPERATIONS:
                invalid(f"Unknown text operation '{operation}'")
            elif operation == "replace" and "find" not in step.parameters:
                issues.append(ValidationIssue(
                    "missing_parameter",
                    "Text operation 'replace' requires 'find'",
                    step.id,
                ))

        return issues

    def _validate_condition(self, step: WorkflowStep, condition: WorkflowCondition) -> List[ValidationIssue]:
        issues = []

        def invalid(message: str) -> None:
            issues.append(ValidationIssue("invalid_condition", message, step.id))

        probe = condition.type in (ConditionType.FILE_EXISTS, ConditionType.APP_RUNNING)
        if not condition.variable and not (probe and condition.value.as_text()):
            invalid(f"Condition on step '{step.name}' has no variable")

        if condition.type in (ConditionType.GREATER_THAN, ConditionType.LESS_THAN):
            if not condition.value.is_numeric:
                invalid(f"Condition '{condition.type.value}' on step '{step.name}' needs a numeric value")

        if condition.type == ConditionType.CUSTOM:
            if not condition.operator:
                invalid(f"Custom condition on step '{step.name}' has no operator")
            elif self.operators.get(condition.operator) is None:
                invalid(f"Unknown condition operator '{condition.operator}'")

        return issues

    def _step_warnings(self, step: WorkflowStep) -> List[ValidationIssue]:
        warnings = []
        if self.config.long_timeout_warning < step.timeout <= self.config.max_timeout:
            warnings.append(ValidationIssue(
                "long_timeout",
                f"Step '{step.name}' has a long timeout ({step.timeout}s)",
                step.id,
                severity="warning",
            ))
        if self.config.high_retry_warning < step.retry_count <= self.config.max_retry_count:
            warnings.append(ValidationIssue(
                "high_retry_count",
                f"Step '{step.name}' retries {step.retry_count} times",
                step.id,
                severity="warning",
            ))
        return warnings

    # === Triggers ===

    def _validate_triggers(self, definition: WorkflowDefinition) -> List[ValidationIssue]:
        issues = []
        for trigger in definition.triggers:
            required = TRIGGER_PARAMETERS.get(trigger.type)
            if trigger.type == TriggerType.SCHEDULED:
                schedule = trigger.param_text("schedule")
                if not schedule or not validate_cron(schedule):
                    issues.append(ValidationIssue(
                        "invalid_schedule",
                        f"Trigger '{trigger.id}' has an invalid cron expression: {schedule!r}",
                    ))
            elif required and not trigger.param_text(required):
                issues.append(ValidationIssue(
                    "missing_parameter",
                    f"Trigger '{trigger.id}' ({trigger.type.value}) requires '{required}'",
                ))
        return issues

    # === References ===

    def _validate_references(
        self,
        definition: WorkflowDefinition,
        known: Set[str],
    ):
        issues: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        available = set(definition.variables) | RUNTIME_VARIABLES | known
        for trigger in definition.triggers:
            available |= TRIGGER_VARIABLES.get(trigger.type, set())
        # Webhook payload keys are only known at run time
        open_ended = any(t.type == TriggerType.WEBHOOK for t in definition.triggers)

        for step in definition.steps:
            for name in sorted(step_references(step) - available):
                issue = ValidationIssue(
                    "unknown_variable",
                    f"Step '{step.name}' references undefined variable '{name}'",
                    step.id,
                )
                if open_ended:
                    issue.severity = "warning"
                    warnings.append(issue)
                else:
                    issues.append(issue)
            available |= step_outputs(step)

        return issues, warnings

    def _detect_cycles(self, definition: WorkflowDefinition) -> List[ValidationIssue]:
        """Find steps that depend on each other's outputs."""
        producers: Dict[str, Set[str]] = {}
        for step in definition.steps:
            for name in step_outputs(step):
                producers.setdefault(name, set()).add(step.id)

        graph: Dict[str, Set[str]] = {}
        for step in definition.steps:
            deps = set()
            for name in step_references(step):
                deps |= producers.get(name, set())
            deps.discard(step.id)
            graph[step.id] = deps

        issues = []
        reported: Set[frozenset] = set()
        visiting: List[str] = []
        done: Set[str] = set()

        def visit(node: str) -> None:
            if node in done:
                return
            if node in visiting:
                cycle = visiting[visiting.index(node):]
                key = frozenset(cycle)
                if key not in reported:
                    reported.add(key)
                    issues.append(ValidationIssue(
                        "circular_dependency",
                        "Steps depend on each other: " + " -> ".join(cycle + [node]),
                        node,
                    ))
                return
            visiting.append(node)
            for dep in sorted(graph.get(node, ())):
                visit(dep)
            visiting.pop()
            done.add(node)

        for step in definition.steps:
            visit(step.id)

        return issues

    def _find_unreachable_steps(self, definition: WorkflowDefinition) -> List[ValidationIssue]:
        """Steps whose condition is false for every run given literal variables."""
        produced: Set[str] = set()
        for step in definition.steps:
            produced |= step_outputs(step)
        dynamic = produced | RUNTIME_VARIABLES
        for trigger in definition.triggers:
            dynamic |= TRIGGER_VARIABLES.get(trigger.type, set())
        if any(t.type == TriggerType.WEBHOOK for t in definition.triggers):
            return []

        warnings = []
        for step in definition.steps:
            condition = step.condition
            if condition is None or step.type == WorkflowStepType.CONDITIONAL:
                continue
            name = condition.variable
            if name in dynamic or name not in definition.variables:
                continue
            literal = definition.variables[name]
            if literal.kind == ValueKind.STRING and PLACEHOLDER.search(literal.value):
                continue

            compare = {
                ConditionType.EQUALS: values_equal,
                ConditionType.NOT_EQUALS: lambda a, b: not values_equal(a, b),
                ConditionType.GREATER_THAN: greater_than,
                ConditionType.LESS_THAN: less_than,
            }.get(condition.type)
            if compare and not compare(literal, condition.value):
                warnings.append(ValidationIssue(
                    "unreachable_step",
                    f"Step '{step.name}' can never run: condition on '{name}' is always false",
                    step.id,
                    severity="warning",
                ))
        return warnings
