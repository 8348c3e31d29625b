"""
Samflow Template Manager

Workflow templates and their catalogue.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import structlog

from samflow.types import WorkflowStep, WorkflowTrigger
from samflow.values import ParameterValue, coerce_parameters, parameters_to_json

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WorkflowTemplate:
    """A parameterized workflow blueprint with {{key}} slots."""
    id: str
    name: str
    description: str
    category: str
    steps: Tuple[WorkflowStep, ...] = ()
    variables: Dict[str, ParameterValue] = field(default_factory=dict)
    triggers: Tuple[WorkflowTrigger, ...] = ()
    tags: FrozenSet[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "triggers", tuple(self.triggers))
        object.__setattr__(self, "tags", frozenset(self.tags))
        object.__setattr__(self, "variables", coerce_parameters(self.variables))

    def matches(self, query: str) -> bool:
        q = query.lower()
        return (
            q in self.name.lower()
            or q in self.description.lower()
            or any(q in tag.lower() for tag in self.tags)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "steps": [s.to_dict() for s in self.steps],
            "variables": parameters_to_json(self.variables),
            "triggers": [t.to_dict() for t in self.triggers],
            "tags": sorted(self.tags),
        }


class TemplateManager:
    """
    Manages workflow templates.

    Features:
    - Template storage and retrieval
    - Category organization
    - Search by name, description and tags
    """

    def __init__(self, load_builtin: bool = True):
        self._templates: Dict[str, WorkflowTemplate] = {}
        self._by_category: Dict[str, List[str]] = {}

        if load_builtin:
            from samflow.templates.builtin import get_builtin_templates

            for template in get_builtin_templates():
                self.register(template)
            logger.debug("builtin_templates_loaded", templates=len(self._templates))

    def register(self, template: WorkflowTemplate) -> str:
        """Register a template."""
        if template.id in self._templates:
            self.unregister(template.id)
        self._templates[template.id] = template
        self._by_category.setdefault(template.category, []).append(template.id)
        return template.id

    def unregister(self, template_id: str) -> bool:
        template = self._templates.pop(template_id, None)
        if template is None:
            return False
        self._by_category[template.category].remove(template_id)
        return True

    def get(self, template_id: str) -> Optional[WorkflowTemplate]:
        return self._templates.get(template_id)

    def list(self, category: Optional[str] = None) -> List[WorkflowTemplate]:
        if category is not None:
            return [self._templates[i] for i in self._by_category.get(category, [])]
        return list(self._templates.values())

    def categories(self) -> List[str]:
        return sorted(c for c, ids in self._by_category.items() if ids)

    def search(self, query: str) -> List[WorkflowTemplate]:
        return [t for t in self._templates.values() if t.matches(query)]
