"""Samflow workflow templates."""

from samflow.templates.builtin import get_builtin_templates
from samflow.templates.manager import TemplateManager, WorkflowTemplate

__all__ = ["TemplateManager", "WorkflowTemplate", "get_builtin_templates"]
