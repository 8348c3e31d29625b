"""
Samflow Execution History

Append-only log of workflow execution results.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional

import structlog

from samflow.persistence import WorkflowStore
from samflow.types import ExecutionStatus, WorkflowExecutionResult

logger = structlog.get_logger(__name__)


class ExecutionHistory:
    """
    Execution history for analytics and debugging.

    Features:
    - Append-only in-memory log with a retention limit
    - Indices by workflow and status
    - Query and filtering
    - Optional write-through to a WorkflowStore
    """

    def __init__(
        self,
        store: Optional[WorkflowStore] = None,
        max_history_count: int = 1000,
    ):
        self.store = store
        self.max_history_count = max_history_count

        self._history: Dict[str, WorkflowExecutionResult] = {}
        self._order: Deque[str] = deque()

        # Indices
        self._by_workflow: Dict[str, List[str]] = defaultdict(list)
        self._by_status: Dict[ExecutionStatus, List[str]] = defaultdict(list)

        self._lock = asyncio.Lock()

    def load(self) -> int:
        """Seed the in-memory log from the store."""
        if not self.store:
            return 0
        count = 0
        for result in self.store.list_history():
            self._index(result)
            count += 1
        self._enforce_limits()
        logger.info("execution_history_loaded", records=count)
        return count

    # === History Operations ===

    async def record(self, result: WorkflowExecutionResult) -> str:
        """Append an execution result."""
        async with self._lock:
            if result.execution_id in self._history:
                raise ValueError(f"Execution {result.execution_id} already recorded")
            if self.store:
                self.store.append_history(result)
            self._index(result)
            self._enforce_limits()

        logger.debug(
            "execution_recorded",
            execution_id=result.execution_id,
            workflow_id=result.workflow_id,
            status=result.status.value,
        )
        return result.execution_id

    def get(self, execution_id: str) -> Optional[WorkflowExecutionResult]:
        return self._history.get(execution_id)

    def list(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[WorkflowExecutionResult]:
        """List results newest first."""
        if workflow_id:
            ids = list(self._by_workflow.get(workflow_id, []))
        else:
            ids = list(self._order)

        if status:
            wanted = set(self._by_status.get(status, []))
            ids = [i for i in ids if i in wanted]

        records = [self._history[i] for i in reversed(ids) if i in self._history]
        return records[offset:offset + limit]

    def __len__(self) -> int:
        return len(self._history)

    # === Analytics ===

    def get_workflow_stats(self, workflow_id: str) -> Dict[str, Any]:
        """Get statistics for a workflow."""
        records = self.list(workflow_id=workflow_id, limit=self.max_history_count)

        if not records:
            return {
                "total_executions": 0,
                "successful": 0,
                "failed": 0,
                "cancelled": 0,
                "success_rate": 0.0,
                "avg_duration": 0.0,
                "last_run": None,
            }

        total = len(records)
        successful = sum(1 for r in records if r.success)
        cancelled = sum(1 for r in records if r.status == ExecutionStatus.CANCELLED)

        return {
            "total_executions": total,
            "successful": successful,
            "failed": total - successful - cancelled,
            "cancelled": cancelled,
            "success_rate": successful / total,
            "avg_duration": sum(r.duration for r in records) / total,
            "last_run": records[0].start_time.isoformat(),
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_records": len(self._history),
            "by_status": {s.value: len(ids) for s, ids in self._by_status.items()},
            "workflows": len(self._by_workflow),
        }

    # === Internals ===

    def _index(self, result: WorkflowExecutionResult) -> None:
        self._history[result.execution_id] = result
        self._order.append(result.execution_id)
        self._by_workflow[result.workflow_id].append(result.execution_id)
        self._by_status[result.status].append(result.execution_id)

    def _enforce_limits(self) -> None:
        """Drop the oldest in-memory records beyond the retention limit."""
        while len(self._order) > self.max_history_count:
            oldest = self._order.popleft()
            result = self._history.pop(oldest, None)
            if result is None:
                continue
            self._by_workflow[result.workflow_id].remove(oldest)
            self._by_status[result.status].remove(oldest)
