"""
Samflow File Operation Handler
"""

from __future__ import annotations

from samflow.actions.executor import BaseStepHandler
from samflow.capabilities import FileOperations
from samflow.errors import InvalidParametersError
from samflow.values import ValueKind


class FileOperationHandler(BaseStepHandler):
    """Handler for copy, move, delete and organize operations."""

    def __init__(self, files: FileOperations):
        self.files = files

    async def execute(self, step, params, context):
        operation = self.require_text(step, params, "operation").lower()

        if operation in ("copy", "move"):
            source = self.require_text(step, params, "source")
            destination = self.require_text(step, params, "destination")
            if operation == "copy":
                output = await self.files.copy(source, destination)
            else:
                output = await self.files.move(source, destination)

        elif operation == "delete":
            paths = self._paths(step, params)
            move_to_trash = self.optional_bool(params, "move_to_trash", True)
            output = await self.files.delete(paths, move_to_trash=move_to_trash)

        elif operation == "organize":
            path = self.require_text(step, params, "path")
            strategy = self.optional_text(params, "strategy", "type")
            output = await self.files.organize(path, strategy)

        else:
            raise InvalidParametersError(f"Unknown file operation: {operation}")

        self.store_output(context, params, output)
        return output

    def _paths(self, step, params):
        files = params.get("files")
        if files is not None:
            if files.kind == ValueKind.LIST:
                return [f.as_text() for f in files.value]
            return [files.as_text()]
        return [self.require_text(step, params, "path")]
