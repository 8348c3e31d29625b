"""
Samflow Workflow Codec

JSON import/export of workflow definitions.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Iterable, List

from samflow.errors import DecodingError
from samflow.types import WorkflowDefinition

FORMAT_VERSION = 1


def export_workflow(definition: WorkflowDefinition, indent: int = 2) -> str:
    """Encode one definition as JSON."""
    return json.dumps(definition.to_dict(), indent=indent)


def import_workflow(text: str) -> WorkflowDefinition:
    """
    Decode one definition.

    Raises:
        DecodingError: the text is not valid JSON or has an unknown shape
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodingError(f"Invalid workflow JSON: {e}") from e
    return WorkflowDefinition.from_dict(data)


def export_bundle(definitions: Iterable[WorkflowDefinition], indent: int = 2) -> str:
    """Encode several definitions with a small envelope."""
    return json.dumps(
        {
            "format_version": FORMAT_VERSION,
            "exported_at": datetime.now().isoformat(),
            "workflows": [d.to_dict() for d in definitions],
        },
        indent=indent,
    )


def import_bundle(text: str) -> List[WorkflowDefinition]:
    """Decode a bundle written by export_bundle, or a single definition."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodingError(f"Invalid workflow JSON: {e}") from e

    if isinstance(data, dict) and "workflows" in data:
        version = data.get("format_version", FORMAT_VERSION)
        if isinstance(version, bool) or not isinstance(version, int):
            raise DecodingError(f"Invalid bundle format version {version!r}")
        if version > FORMAT_VERSION:
            raise DecodingError(f"Unsupported bundle format version {version}")
        workflows = data["workflows"]
        if not isinstance(workflows, list):
            raise DecodingError("Bundle 'workflows' must be a list")
        return [WorkflowDefinition.from_dict(w) for w in workflows]

    return [WorkflowDefinition.from_dict(data)]
