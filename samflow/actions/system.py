"""
Samflow System Command Handler
"""

from __future__ import annotations

from samflow.actions.executor import BaseStepHandler
from samflow.capabilities import SystemQuery


class SystemCommandHandler(BaseStepHandler):
    """Runs a read-only system query."""

    def __init__(self, system: SystemQuery):
        self.system = system

    async def execute(self, step, params, context):
        query = self.require_text(step, params, "query")
        output = await self.system.query(query)
        self.store_output(context, params, output)
        return output
