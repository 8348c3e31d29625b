"""Samflow workflow builder: drafting, validation and optimization."""

from samflow.builder.builder import BuildResult, WorkflowBuilder
from samflow.builder.completion import CompletionClient, HTTPCompletionClient
from samflow.builder.validator import ValidationIssue, ValidationResult, WorkflowValidator

__all__ = [
    "BuildResult",
    "CompletionClient",
    "HTTPCompletionClient",
    "ValidationIssue",
    "ValidationResult",
    "WorkflowBuilder",
    "WorkflowValidator",
]
