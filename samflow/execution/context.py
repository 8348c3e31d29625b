"""
Samflow Execution Context

Mutable per-run state for a workflow execution.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import structlog

from samflow.types import ExecutionStatus
from samflow.values import ParameterValue, ValueKind

logger = structlog.get_logger(__name__)


class ExecutionContext:
    """
    Execution context for one workflow run.

    Features:
    - Variable storage and retrieval
    - Placeholder expansion with {{ }} syntax
    - Nested path support (map keys and list indices)
    - Pause/resume/cancel flags observed at step boundaries

    A context is owned by exactly one run and is discarded when it ends.
    """

    # Expression pattern for {{ variable }}
    EXPRESSION_PATTERN = re.compile(r'\{\{\s*([^}]+?)\s*\}\}')

    def __init__(
        self,
        workflow_id: str,
        variables: Optional[Mapping[str, Any]] = None,
        execution_id: Optional[str] = None,
    ):
        self.workflow_id = workflow_id
        self.execution_id = execution_id or str(uuid.uuid4())
        self.variables: Dict[str, ParameterValue] = {}
        self.current_step_index = 0
        self.status = ExecutionStatus.IDLE
        self.error: Optional[str] = None
        self.start_time = datetime.now()
        self.end_time: Optional[datetime] = None

        # Placeholders that did not resolve during the last expand()
        self.unresolved: List[str] = []

        self._cancelled = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()

        if variables:
            self.update(variables)

    # === State ===

    @property
    def is_running(self) -> bool:
        return self.status in (ExecutionStatus.RUNNING, ExecutionStatus.PAUSED)

    @property
    def is_paused(self) -> bool:
        return self.status == ExecutionStatus.PAUSED

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> None:
        self.status = ExecutionStatus.RUNNING
        self.start_time = datetime.now()

    def finish(self, status: ExecutionStatus, error: Optional[str] = None) -> None:
        self.status = status
        self.error = error
        self.end_time = datetime.now()
        self._resume_event.set()

    def pause(self) -> bool:
        """Request a pause at the next step boundary."""
        if self.status != ExecutionStatus.RUNNING:
            return False
        self.status = ExecutionStatus.PAUSED
        self._resume_event.clear()
        logger.info("execution_paused", execution_id=self.execution_id)
        return True

    def resume(self) -> bool:
        if self.status != ExecutionStatus.PAUSED:
            return False
        self.status = ExecutionStatus.RUNNING
        self._resume_event.set()
        logger.info("execution_resumed", execution_id=self.execution_id)
        return True

    def cancel(self) -> bool:
        """Request cancellation at the next step boundary."""
        if self.status.is_terminal:
            return False
        self._cancelled = True
        # Wake a paused run so it can observe the cancellation
        self._resume_event.set()
        logger.info("execution_cancel_requested", execution_id=self.execution_id)
        return True

    async def wait_if_paused(self) -> None:
        """Block while paused. Returns immediately otherwise."""
        while self.status == ExecutionStatus.PAUSED and not self._cancelled:
            await self._resume_event.wait()

    # === Variables ===

    def set(self, key: str, value: Any) -> None:
        self.variables[key] = ParameterValue.of(value)

    def get(self, key: str) -> Optional[ParameterValue]:
        """Get a variable, following dotted paths into maps and lists."""
        if key in self.variables:
            return self.variables[key]

        parts = key.split(".")
        return self._get_nested(self.variables.get(parts[0]), parts[1:])

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def update(self, data: Mapping[str, Any]) -> None:
        for key, value in data.items():
            self.set(key, value)

    def snapshot(self) -> Dict[str, ParameterValue]:
        return dict(self.variables)

    def _get_nested(
        self,
        data: Optional[ParameterValue],
        parts: List[str],
    ) -> Optional[ParameterValue]:
        """Get a nested value."""
        if data is None or not parts:
            return data

        if data.kind == ValueKind.MAP:
            return self._get_nested(data.value.get(parts[0]), parts[1:])

        if data.kind == ValueKind.LIST:
            try:
                index = int(parts[0])
            except ValueError:
                return None
            if 0 <= index < len(data.value):
                return self._get_nested(data.value[index], parts[1:])

        return None

    # === Expansion ===

    def expand(self, value: ParameterValue) -> ParameterValue:
        """
        Expand {{ name }} placeholders inside string values.

        A string that is exactly one placeholder takes the variable's typed
        value. Unresolved placeholders are left verbatim and recorded in
        ``unresolved``.
        """
        if value.kind == ValueKind.STRING:
            return self._expand_string(value)
        if value.kind == ValueKind.LIST:
            return ParameterValue(
                ValueKind.LIST, tuple(self.expand(v) for v in value.value)
            )
        if value.kind == ValueKind.MAP:
            return ParameterValue.of({k: self.expand(v) for k, v in value.value.items()})
        return value

    def expand_all(self, params: Mapping[str, ParameterValue]) -> Dict[str, ParameterValue]:
        self.unresolved = []
        return {k: self.expand(v) for k, v in params.items()}

    def _expand_string(self, value: ParameterValue) -> ParameterValue:
        text = value.value

        match = self.EXPRESSION_PATTERN.fullmatch(text.strip())
        if match:
            resolved = self.get(match.group(1))
            if resolved is not None:
                return resolved
            self.unresolved.append(match.group(1))
            return value

        def replace(m: "re.Match[str]") -> str:
            resolved = self.get(m.group(1))
            if resolved is None:
                self.unresolved.append(m.group(1))
                return m.group(0)
            return resolved.as_text()

        return ParameterValue(ValueKind.STRING, self.EXPRESSION_PATTERN.sub(replace, text))

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(workflow_id={self.workflow_id!r}, "
            f"execution_id={self.execution_id!r}, status={self.status.value})"
        )
