"""
Samflow Workflow Executor

Runs workflow definitions step by step.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from samflow.actions.executor import StepDispatcher
from samflow.conditions.evaluator import ConditionEvaluator
from samflow.core.config import EngineConfig
from samflow.errors import (
    DependencyNotMetError,
    ExecutionContextMissingError,
    InvalidDefinitionError,
    InvalidParametersError,
    StepExecutionError,
    StepTimeoutError,
    UserCancelledError,
    WorkflowAlreadyRunningError,
    WorkflowError,
    WorkflowErrorKind,
)
from samflow.execution.context import ExecutionContext
from samflow.execution.history import ExecutionHistory
from samflow.execution.retry import BackoffPolicy
from samflow.types import (
    ExecutionStatus,
    WorkflowDefinition,
    WorkflowExecutionResult,
    WorkflowStep,
    WorkflowStepResult,
    WorkflowStepType,
)

logger = structlog.get_logger(__name__)

SKIPPED_OUTPUT = "Step skipped - condition not met"


class WorkflowExecutor:
    """
    Main workflow execution engine.

    Features:
    - Sequential step orchestration in definition order
    - Condition-gated steps
    - Per-step timeout and retry with exponential backoff
    - Placeholder expansion in step parameters
    - Cooperative pause/resume/cancel at step boundaries
    - Execution history and callbacks

    One executor runs a single workflow at a time.
    """

    def __init__(
        self,
        dispatcher: Optional[StepDispatcher] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        history: Optional[ExecutionHistory] = None,
        config: Optional[EngineConfig] = None,
        backoff: Optional[BackoffPolicy] = None,
    ):
        self.config = config or EngineConfig()
        self.evaluator = evaluator or ConditionEvaluator()
        self.dispatcher = dispatcher or StepDispatcher.with_defaults(evaluator=self.evaluator)
        self.history = history
        self.backoff = backoff or BackoffPolicy.from_config(self.config)

        self._active: Optional[ExecutionContext] = None
        self._stats = {
            "total_runs": 0,
            "succeeded": 0,
            "failed": 0,
            "cancelled": 0,
            "steps_executed": 0,
            "retries": 0,
        }

        # Event callbacks
        self._on_execution_started: List[Callable] = []
        self._on_execution_completed: List[Callable] = []
        self._on_step_completed: List[Callable] = []

    # === Run Control ===

    @property
    def is_running(self) -> bool:
        return self._active is not None

    @property
    def current_context(self) -> Optional[ExecutionContext]:
        return self._active

    def require_context(self) -> ExecutionContext:
        """Return the in-flight context or fail if nothing is running."""
        if self._active is None:
            raise ExecutionContextMissingError("No workflow is currently executing")
        return self._active

    def _target(self, execution_id: Optional[str]) -> Optional[ExecutionContext]:
        context = self._active
        if context is None:
            return None
        if execution_id is not None and context.execution_id != execution_id:
            return None
        return context

    def pause(self, execution_id: Optional[str] = None) -> bool:
        context = self._target(execution_id)
        return context.pause() if context else False

    def resume(self, execution_id: Optional[str] = None) -> bool:
        context = self._target(execution_id)
        return context.resume() if context else False

    def cancel(self, execution_id: Optional[str] = None) -> bool:
        context = self._target(execution_id)
        return context.cancel() if context else False

    # === Execution ===

    async def execute(
        self,
        definition: WorkflowDefinition,
        initial_variables: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowExecutionResult:
        """
        Execute a workflow definition.

        Ordinary step failures are reported through the returned result.
        Raises only for structural problems: another run in flight, or a
        step type with no registered handler.

        Args:
            definition: Workflow to run
            initial_variables: Bindings layered over the definition's variables

        Returns:
            The complete execution result
        """
        if self._active is not None:
            raise WorkflowAlreadyRunningError()

        self._check_definition(definition)

        context = ExecutionContext(definition.id, definition.variables)
        if initial_variables:
            context.update(initial_variables)

        self._active = context
        context.start()

        logger.info(
            "workflow_started",
            workflow_id=definition.id,
            execution_id=context.execution_id,
            steps=len(definition.steps),
        )
        await self._fire_callbacks(self._on_execution_started, definition, context)

        step_results: List[WorkflowStepResult] = []
        status = ExecutionStatus.FAILED
        error: Optional[str] = None
        error_kind: Optional[WorkflowErrorKind] = None

        try:
            await self._run_steps(definition, context, step_results)
            status = ExecutionStatus.SUCCEEDED

        except UserCancelledError as e:
            status = ExecutionStatus.CANCELLED
            error, error_kind = e.message, e.kind

        except WorkflowError as e:
            status = ExecutionStatus.FAILED
            error, error_kind = e.message, e.kind

        except asyncio.CancelledError:
            status = ExecutionStatus.CANCELLED
            error = "Workflow execution was cancelled"
            error_kind = WorkflowErrorKind.USER_CANCELLED
            raise

        finally:
            context.finish(status, error)
            self._active = None

            result = self._build_result(
                definition, context, step_results, status, error, error_kind
            )
            self._count(status)

            if self.history is not None:
                try:
                    await self.history.record(result)
                except Exception as e:
                    logger.error(
                        "history_record_failed",
                        workflow_id=definition.id,
                        execution_id=context.execution_id,
                        error=str(e),
                    )

            await self._fire_callbacks(self._on_execution_completed, result)

            logger.info(
                "workflow_completed",
                workflow_id=definition.id,
                execution_id=context.execution_id,
                status=status.value,
                completed_steps=result.completed_steps,
                total_steps=result.total_steps,
                duration=result.duration,
            )

        return result

    def _check_definition(self, definition: WorkflowDefinition) -> None:
        for step in definition.steps:
            if not self.dispatcher.supports(step.type):
                raise InvalidDefinitionError(
                    f"Step '{step.id}' has unsupported type '{step.type.value}'"
                )

    async def _run_steps(
        self,
        definition: WorkflowDefinition,
        context: ExecutionContext,
        step_results: List[WorkflowStepResult],
    ) -> None:
        for index, step in enumerate(definition.steps):
            context.current_step_index = index

            # Pause and cancellation are only observed here, between steps
            await context.wait_if_paused()
            if context.is_cancelled:
                raise UserCancelledError("Workflow execution was cancelled")

            if step.condition is not None and step.type != WorkflowStepType.CONDITIONAL:
                if not await self.evaluator.evaluate(step.condition, context):
                    now = datetime.now()
                    skipped = WorkflowStepResult(
                        step_id=step.id,
                        step_name=step.name,
                        success=True,
                        start_time=now,
                        end_time=now,
                        output=SKIPPED_OUTPUT,
                        skipped=True,
                    )
                    step_results.append(skipped)
                    logger.info("step_skipped", step_id=step.id, step_name=step.name)
                    await self._fire_callbacks(self._on_step_completed, step, skipped)
                    continue

            attempts, failure = await self._execute_step(step, context)
            step_results.extend(attempts)

            if failure is None:
                continue

            if step.continue_on_error:
                logger.warning(
                    "step_failure_ignored",
                    step_id=step.id,
                    step_name=step.name,
                    error=failure.message,
                )
                continue

            raise failure

    async def _execute_step(
        self,
        step: WorkflowStep,
        context: ExecutionContext,
    ) -> Tuple[List[WorkflowStepResult], Optional[WorkflowError]]:
        """
        Run a step with its retry policy.

        Returns the recorded attempt results and the final error, if the
        step failed on every attempt.
        """
        results: List[WorkflowStepResult] = []
        failure: Optional[WorkflowError] = None

        for attempt in range(step.retry_count + 1):
            if attempt > 0:
                delay = self.backoff.delay_for(attempt)
                self._stats["retries"] += 1
                logger.info(
                    "step_retry_scheduled",
                    step_id=step.id,
                    attempt=attempt,
                    delay=round(delay, 3),
                )
                await asyncio.sleep(delay)

            started = datetime.now()
            output: Optional[str] = None
            failure = None
            retryable = True

            logger.debug("executing_step", step_id=step.id, step_name=step.name, attempt=attempt)
            self._stats["steps_executed"] += 1

            try:
                output = await self._attempt(step, context)

            except (InvalidParametersError, DependencyNotMetError, ExecutionContextMissingError) as e:
                failure = e
                retryable = False

            except WorkflowError as e:
                failure = e

            except Exception as e:
                failure = StepExecutionError(f"Step '{step.name}' failed: {e}")

            result = WorkflowStepResult(
                step_id=step.id,
                step_name=step.name,
                success=failure is None,
                start_time=started,
                end_time=datetime.now(),
                output=output,
                error=failure.message if failure else None,
                retry_count=attempt,
            )
            if self.config.record_retry_attempts:
                results.append(result)
            else:
                results[:] = [result]

            await self._fire_callbacks(self._on_step_completed, step, result)

            if failure is None:
                logger.info("step_completed", step_id=step.id, attempt=attempt)
                return results, None

            logger.warning(
                "step_failed",
                step_id=step.id,
                step_name=step.name,
                attempt=attempt,
                error=failure.message,
            )
            if not retryable:
                break

        return results, failure

    async def _attempt(self, step: WorkflowStep, context: ExecutionContext) -> Optional[str]:
        params = context.expand_all(step.parameters)
        if self.config.strict_variables and context.unresolved:
            raise DependencyNotMetError(
                f"Unresolved variables in step '{step.name}': {', '.join(context.unresolved)}"
            )

        task = asyncio.ensure_future(self.dispatcher.dispatch(step, params, context))
        try:
            done, _ = await asyncio.wait({task}, timeout=step.timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task not in done:
            # The handler is not awaited past its timeout
            task.cancel()
            task.add_done_callback(_consume_result)
            raise StepTimeoutError(f"Step '{step.name}' timed out after {step.timeout}s")

        output = task.result()
        return str(output) if output is not None else None

    def _build_result(
        self,
        definition: WorkflowDefinition,
        context: ExecutionContext,
        step_results: List[WorkflowStepResult],
        status: ExecutionStatus,
        error: Optional[str],
        error_kind: Optional[WorkflowErrorKind],
    ) -> WorkflowExecutionResult:
        final: Dict[str, bool] = {}
        for r in step_results:
            final[r.step_id] = r.success

        return WorkflowExecutionResult(
            execution_id=context.execution_id,
            workflow_id=definition.id,
            workflow_version=definition.version,
            success=status == ExecutionStatus.SUCCEEDED,
            status=status,
            start_time=context.start_time,
            end_time=context.end_time or datetime.now(),
            completed_steps=sum(1 for ok in final.values() if ok),
            total_steps=len(definition.steps),
            error=error,
            error_kind=error_kind,
            step_results=tuple(step_results),
            variables=context.snapshot(),
        )

    def _count(self, status: ExecutionStatus) -> None:
        self._stats["total_runs"] += 1
        if status == ExecutionStatus.SUCCEEDED:
            self._stats["succeeded"] += 1
        elif status == ExecutionStatus.CANCELLED:
            self._stats["cancelled"] += 1
        else:
            self._stats["failed"] += 1

    # === Event Callbacks ===

    def on_execution_started(self, callback: Callable) -> None:
        """Register callback for execution start."""
        self._on_execution_started.append(callback)

    def on_execution_completed(self, callback: Callable) -> None:
        """Register callback for execution completion."""
        self._on_execution_completed.append(callback)

    def on_step_completed(self, callback: Callable) -> None:
        """Register callback for each recorded step result."""
        self._on_step_completed.append(callback)

    async def _fire_callbacks(
        self,
        callbacks: List[Callable],
        *args,
    ) -> None:
        """Fire callbacks."""
        for callback in callbacks:
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("callback_error", error=str(e))

    # === Statistics ===

    def get_stats(self) -> Dict[str, Any]:
        """Get executor statistics."""
        return {
            **self._stats,
            "is_running": self.is_running,
            "step_types": [t.value for t in self.dispatcher.step_types],
        }


def _consume_result(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()
