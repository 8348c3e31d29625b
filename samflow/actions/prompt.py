"""
Samflow User Input Handler
"""

from __future__ import annotations

from samflow.actions.executor import BaseStepHandler
from samflow.capabilities import UserPrompt


class UserInputHandler(BaseStepHandler):
    """Asks the user for a value and binds it to `input_variable`."""

    def __init__(self, prompt: UserPrompt):
        self.prompt = prompt

    async def execute(self, step, params, context):
        prompt = self.require_text(step, params, "prompt")
        default_value = self.optional_text(params, "default_value")
        variable = self.optional_text(params, "input_variable", "user_input")

        answer = await self.prompt.request(prompt, default_value, timeout=step.timeout)
        context.set(variable, answer)
        return f"User input received: {answer}"
