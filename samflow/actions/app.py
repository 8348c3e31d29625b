"""
Samflow App Control Handler
"""

from __future__ import annotations

from samflow.actions.executor import BaseStepHandler
from samflow.capabilities import ApplicationControl


class AppControlHandler(BaseStepHandler):
    """Launches applications or sends them commands."""

    def __init__(self, apps: ApplicationControl):
        self.apps = apps

    async def execute(self, step, params, context):
        command = self.require_text(step, params, "command")
        app = self.require_text(step, params, "app")

        if command.lower() in ("launch", "open"):
            output = await self.apps.launch(app)
        else:
            output = await self.apps.send_command(app, command)

        self.store_output(context, params, output)
        return output
