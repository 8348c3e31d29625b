"""Samflow execution state, retry policy and history."""

from samflow.execution.context import ExecutionContext
from samflow.execution.history import ExecutionHistory
from samflow.execution.retry import BackoffPolicy

__all__ = ["ExecutionContext", "ExecutionHistory", "BackoffPolicy"]
