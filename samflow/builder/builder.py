"""
Samflow Workflow Builder

Drafts workflows from descriptions and templates, then validates and
optimizes them locally.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

import structlog

from samflow.builder.completion import CompletionClient
from samflow.builder.validator import ValidationIssue, ValidationResult, WorkflowValidator
from samflow.conditions.operators import OperatorRegistry
from samflow.core.config import BuilderConfig
from samflow.errors import DecodingError, InvalidParametersError
from samflow.templates.manager import WorkflowTemplate
from samflow.types import (
    TriggerType,
    WorkflowCondition,
    WorkflowDefinition,
    WorkflowStep,
    WorkflowStepType,
    WorkflowTrigger,
)
from samflow.values import ParameterValue, ValueKind, coerce_parameters

logger = structlog.get_logger(__name__)

DEFAULT_RETRY_COUNTS = {
    WorkflowStepType.FILE_OPERATION: 2,
    WorkflowStepType.APP_CONTROL: 1,
    WorkflowStepType.SYSTEM_COMMAND: 1,
    WorkflowStepType.TEXT_PROCESSING: 0,
}

DEFAULT_TIMEOUTS = {
    WorkflowStepType.FILE_OPERATION: 60.0,
    WorkflowStepType.APP_CONTROL: 30.0,
    WorkflowStepType.SYSTEM_COMMAND: 15.0,
    WorkflowStepType.USER_INPUT: 300.0,
    WorkflowStepType.DELAY: 3600.0,
}

TAG_KEYWORDS = (
    (("file",), "file-management"),
    (("email", "mail"), "email"),
    (("calendar", "event"), "calendar"),
    (("backup",), "backup"),
    (("organize",), "organization"),
)

# Step types whose repeated identical execution has no additional effect
IDEMPOTENT_TYPES = {WorkflowStepType.TEXT_PROCESSING, WorkflowStepType.SYSTEM_COMMAND}

_CAMEL = re.compile(r'(?<!^)(?=[A-Z])')


@dataclass
class BuildResult:
    """A drafted workflow and its validation."""
    definition: WorkflowDefinition
    validation: ValidationResult

    @property
    def issues(self) -> List[ValidationIssue]:
        return self.validation.issues

    @property
    def valid(self) -> bool:
        return self.validation.valid


def _snake(name: str) -> str:
    return _CAMEL.sub("_", name.strip()).lower()


def infer_name(description: str) -> str:
    words = description.split()[:4]
    if not words:
        return "Untitled Workflow"
    return " ".join(w.capitalize() for w in words)


def infer_tags(description: str) -> FrozenSet[str]:
    lowered = description.lower()
    return frozenset(
        tag for keywords, tag in TAG_KEYWORDS if any(k in lowered for k in keywords)
    )


def infer_triggers(description: str) -> Tuple[WorkflowTrigger, ...]:
    lowered = description.lower()
    if "daily" in lowered or "every day" in lowered:
        return (WorkflowTrigger(
            id=str(uuid.uuid4()),
            type=TriggerType.SCHEDULED,
            parameters={"schedule": "0 9 * * *"},
        ),)
    if "when" in lowered and "file" in lowered:
        return (WorkflowTrigger(
            id=str(uuid.uuid4()),
            type=TriggerType.FILE_CHANGED,
            parameters={"path": "~/Downloads"},
        ),)
    return (WorkflowTrigger(id=str(uuid.uuid4()), type=TriggerType.MANUAL),)


class WorkflowBuilder:
    """
    Builds, validates and optimizes workflow definitions.

    Features:
    - Drafting from natural language through a completion client
    - Instantiation from templates
    - Local validation with named issues
    - Local optimization passes
    """

    def __init__(
        self,
        client: Optional[CompletionClient] = None,
        config: Optional[BuilderConfig] = None,
        supported_types: Optional[Iterable[WorkflowStepType]] = None,
        operators: Optional[OperatorRegistry] = None,
    ):
        self.client = client
        self.config = config or BuilderConfig()
        self.validator = WorkflowValidator(
            config=self.config,
            supported_types=supported_types,
            operators=operators,
        )

    # === Building ===

    async def build_from_description(
        self,
        description: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> BuildResult:
        """
        Draft a workflow from a description.

        Client failures degrade to an empty draft plus a
        ``completion_failed`` issue; they are never raised.
        """
        draft_issues: List[ValidationIssue] = []
        draft: Dict[str, Any] = {}

        if self.client is None:
            draft_issues.append(ValidationIssue(
                "completion_failed", "No completion client is configured"
            ))
        else:
            try:
                draft = await self.client.complete(description, context)
            except Exception as e:
                logger.error("completion_failed", error=str(e))
                draft_issues.append(ValidationIssue(
                    "completion_failed", f"Could not draft workflow: {e}"
                ))
                draft = {}

            if not isinstance(draft, dict):
                logger.error("completion_malformed", draft_type=type(draft).__name__)
                draft_issues.append(ValidationIssue(
                    "completion_failed",
                    f"Draft must be an object, got {type(draft).__name__}",
                ))
                draft = {}

        steps = self._steps_from_draft(draft.get("steps") or [], draft_issues)
        variables = self._variables_from_draft(draft.get("variables") or {}, draft_issues)
        triggers = self._triggers_from_draft(draft.get("triggers") or [], draft_issues)

        definition = WorkflowDefinition(
            name=str(draft.get("name") or infer_name(description)),
            description=description,
            steps=steps,
            variables=variables,
            triggers=triggers or infer_triggers(description),
            tags=infer_tags(description),
        )

        validation = self.validate(definition).merged(draft_issues)
        logger.info(
            "workflow_drafted",
            workflow_id=definition.id,
            steps=len(steps),
            valid=validation.valid,
        )
        return BuildResult(definition=definition, validation=validation)

    def build_from_template(
        self,
        template: WorkflowTemplate,
        values: Optional[Mapping[str, Any]] = None,
        name: Optional[str] = None,
    ) -> WorkflowDefinition:
        """
        Instantiate a template.

        ``{{key}}`` slots for supplied values are filled in step names and
        string parameters; the values are also merged into the variables.
        """
        supplied = coerce_parameters(values or {})

        steps = tuple(
            WorkflowStep(
                id=step.id,
                name=_fill_text(step.name, supplied),
                type=step.type,
                parameters={k: _fill(v, supplied) for k, v in step.parameters.items()},
                continue_on_error=step.continue_on_error,
                retry_count=step.retry_count,
                timeout=step.timeout,
                condition=step.condition,
            )
            for step in template.steps
        )
        triggers = tuple(
            WorkflowTrigger(
                id=str(uuid.uuid4()),
                type=t.type,
                parameters=t.parameters,
                is_enabled=t.is_enabled,
            )
            for t in template.triggers
        )

        definition = WorkflowDefinition(
            name=name or template.name,
            description=template.description,
            steps=steps,
            variables={**template.variables, **supplied},
            triggers=triggers,
            tags=template.tags | {"template"},
        )
        logger.info("workflow_from_template", template_id=template.id, workflow_id=definition.id)
        return definition

    # === Validation ===

    def validate(
        self,
        definition: WorkflowDefinition,
        known_variables: Iterable[str] = (),
    ) -> ValidationResult:
        return self.validator.validate(definition, known_variables)

    # === Optimization ===

    def optimize(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """
        Apply local optimizations.

        - Drop delays of zero duration
        - Merge adjacent notifications with the same title
        - Collapse identical adjacent idempotent steps

        Returns the same definition when nothing changed, otherwise a new
        version.
        """
        optimized: List[WorkflowStep] = []
        removed = 0

        for step in definition.steps:
            if self._is_noop_delay(step):
                removed += 1
                continue

            previous = optimized[-1] if optimized else None
            if previous is not None and step.condition is None and previous.condition is None:
                merged = self._merge_notifications(previous, step)
                if merged is not None:
                    optimized[-1] = merged
                    removed += 1
                    continue
                if self._is_duplicate(previous, step):
                    removed += 1
                    continue

            optimized.append(step)

        if not removed:
            return definition

        logger.info("workflow_optimized", workflow_id=definition.id, removed_steps=removed)
        return definition.revise(steps=tuple(optimized))

    @staticmethod
    def _is_noop_delay(step: WorkflowStep) -> bool:
        if step.type != WorkflowStepType.DELAY:
            return False
        duration = step.param("duration")
        return duration is not None and duration.is_numeric and duration.value == 0

    @staticmethod
    def _merge_notifications(first: WorkflowStep, second: WorkflowStep) -> Optional[WorkflowStep]:
        if first.type != WorkflowStepType.NOTIFICATION or second.type != WorkflowStepType.NOTIFICATION:
            return None
        if first.param("title") != second.param("title"):
            return None
        if first.continue_on_error != second.continue_on_error:
            return None

        messages = [
            m.as_text()
            for m in (first.param("message"), second.param("message"))
            if m is not None and m.as_text()
        ]
        if len(messages) == 2 and messages[0] == messages[1]:
            messages = messages[:1]

        parameters = dict(first.parameters)
        parameters["message"] = ParameterValue.of("\n".join(messages))
        return WorkflowStep(
            id=first.id,
            name=first.name,
            type=first.type,
            parameters=parameters,
            continue_on_error=first.continue_on_error,
            retry_count=max(first.retry_count, second.retry_count),
            timeout=max(first.timeout, second.timeout),
        )

    @staticmethod
    def _is_duplicate(first: WorkflowStep, second: WorkflowStep) -> bool:
        return (
            second.type in IDEMPOTENT_TYPES
            and first.type == second.type
            and first.parameters == second.parameters
            and first.continue_on_error == second.continue_on_error
        )

    # === Draft Parsing ===

    def _steps_from_draft(
        self,
        drafts: List[Any],
        issues: List[ValidationIssue],
    ) -> Tuple[WorkflowStep, ...]:
        if not isinstance(drafts, list):
            issues.append(ValidationIssue("invalid_parameter", "Draft steps are not a list"))
            return ()
        steps: List[WorkflowStep] = []
        seen: Set[str] = set()

        for index, draft in enumerate(drafts):
            if not isinstance(draft, dict):
                issues.append(ValidationIssue(
                    "invalid_parameter", f"Draft step {index} is not an object"
                ))
                continue

            raw_type = str(draft.get("type", ""))
            try:
                step_type = WorkflowStepType(_snake(raw_type))
            except ValueError:
                issues.append(ValidationIssue(
                    "unsupported_step_type",
                    f"Draft step {index} has unsupported type '{raw_type}'",
                ))
                continue

            step_id = str(draft.get("id") or f"step_{index + 1}")
            if step_id in seen:
                issues.append(ValidationIssue(
                    "duplicate_step_id", f"Duplicate step id '{step_id}' in draft", step_id
                ))
                step_id = f"{step_id}_{uuid.uuid4().hex[:8]}"
            seen.add(step_id)

            try:
                condition = draft.get("condition")
                if isinstance(condition, dict):
                    condition = dict(condition, type=_snake(str(condition.get("type", ""))))
                steps.append(WorkflowStep(
                    id=step_id,
                    name=str(draft.get("name") or step_type.value.replace("_", " ").title()),
                    type=step_type,
                    parameters=coerce_parameters(draft.get("parameters") or {}),
                    continue_on_error=bool(draft.get("continue_on_error", False)),
                    retry_count=int(draft.get("retry_count", DEFAULT_RETRY_COUNTS.get(step_type, 1))),
                    timeout=float(draft.get("timeout", DEFAULT_TIMEOUTS.get(step_type, 30.0))),
                    condition=WorkflowCondition.from_dict(condition) if condition else None,
                ))
            except (DecodingError, InvalidParametersError, TypeError, ValueError) as e:
                issues.append(ValidationIssue(
                    "invalid_parameter", f"Draft step {index} is malformed: {e}", step_id
                ))

        return tuple(steps)

    @staticmethod
    def _variables_from_draft(
        drafts: Any,
        issues: List[ValidationIssue],
    ) -> Dict[str, ParameterValue]:
        if not isinstance(drafts, dict):
            issues.append(ValidationIssue("invalid_parameter", "Draft variables are not an object"))
            return {}
        variables = {}
        for name, value in drafts.items():
            try:
                variables[str(name)] = ParameterValue.from_json(value)
            except DecodingError as e:
                issues.append(ValidationIssue(
                    "invalid_parameter", f"Draft variable '{name}' is malformed: {e.message}"
                ))
        return variables

    @staticmethod
    def _triggers_from_draft(
        drafts: List[Any],
        issues: List[ValidationIssue],
    ) -> Tuple[WorkflowTrigger, ...]:
        if not isinstance(drafts, list):
            issues.append(ValidationIssue("invalid_parameter", "Draft triggers are not a list"))
            return ()
        triggers = []
        for index, draft in enumerate(drafts):
            if not isinstance(draft, dict):
                continue
            try:
                triggers.append(WorkflowTrigger(
                    id=str(draft.get("id") or uuid.uuid4()),
                    type=TriggerType(_snake(str(draft.get("type", "")))),
                    parameters=coerce_parameters(draft.get("parameters") or {}),
                ))
            except (ValueError, DecodingError) as e:
                issues.append(ValidationIssue(
                    "invalid_parameter", f"Draft trigger {index} is malformed: {e}"
                ))
        return tuple(triggers)


def _fill_text(text: str, values: Mapping[str, ParameterValue]) -> str:
    def replace(match: "re.Match[str]") -> str:
        value = values.get(match.group(1))
        return value.as_text() if value is not None else match.group(0)

    return re.sub(r'\{\{\s*([^}]+?)\s*\}\}', replace, text)


def _fill(value: ParameterValue, values: Mapping[str, ParameterValue]) -> ParameterValue:
    if value.kind == ValueKind.STRING:
        match = re.fullmatch(r'\{\{\s*([^}]+?)\s*\}\}', value.value.strip())
        if match and match.group(1) in values:
            return values[match.group(1)]
        return ParameterValue.of(_fill_text(value.value, values))
    if value.kind == ValueKind.LIST:
        return ParameterValue.of([_fill(v, values) for v in value.value])
    if value.kind == ValueKind.MAP:
        return ParameterValue.of({k: _fill(v, values) for k, v in value.value.items()})
    return value
