"""
Samflow Notification Handler
"""

from __future__ import annotations

from samflow.actions.executor import BaseStepHandler
from samflow.capabilities import Notifier


class NotificationHandler(BaseStepHandler):
    """Posts a notification with `title` and optional `message`."""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    async def execute(self, step, params, context):
        title = self.require_text(step, params, "title")
        message = self.optional_text(params, "message", "")
        await self.notifier.notify(title, message)
        return f"Notification sent: {title}"
