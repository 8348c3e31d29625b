"""
Samflow Completion Clients

Collaborators that turn a natural-language description into a draft
workflow.
"""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from samflow.core.config import BuilderConfig

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = """You design desktop automation workflows.
Reply with a single JSON object and nothing else, shaped like:
{
  "name": "short title",
  "steps": [
    {"name": "...", "type": "<step type>", "parameters": {...},
     "condition": {"type": "...", "variable": "...", "value": ...}}
  ],
  "variables": {"name": "value"},
  "triggers": [{"type": "<trigger type>", "parameters": {...}}]
}
Step types: file_operation (operation: copy|move|delete|organize, source,
destination, path, files), app_control (command, app), system_command (query),
user_input (prompt, default_value, input_variable), conditional (condition,
output_variable), delay (duration in seconds), text_processing (text,
operation: uppercase|lowercase|trim|length|replace, output_variable),
notification (title, message).
Trigger types: manual, scheduled (schedule: five-field cron), file_changed
(path), app_launched (app_name), system_event (event_type), hotkey
(key_combo), webhook.
Reference variables as {{name}}."""


class CompletionClient(ABC):
    """Produces a draft workflow for a description."""

    @abstractmethod
    async def complete(
        self,
        description: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Return a draft with optional "name", "steps", "variables" and
        "triggers" keys.
        """
        pass


class HTTPCompletionClient(CompletionClient):
    """
    Completion client for OpenAI-compatible chat completion endpoints.

    Retries transport errors with exponential backoff.
    """

    def __init__(self, config: Optional[BuilderConfig] = None):
        self.config = config or BuilderConfig()
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def initialize(self) -> None:
        """Initialize the HTTP client."""
        if self._client is not None:
            return
        api_key = self.config.completion_api_key or os.environ.get("OPENAI_API_KEY")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=self.config.completion_timeout,
        )

    async def close(self) -> None:
        """Close the client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def complete(
        self,
        description: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        await self.initialize()

        user_content = description
        if context:
            user_content += "\n\nContext:\n" + json.dumps(context, default=str)

        request_data = {
            "model": self.config.completion_model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_content},
            ],
            "temperature": 0.2,
        }

        data = await self._post(request_data)
        content = data["choices"][0]["message"].get("content") or ""
        draft = extract_json_object(content)

        logger.info("completion_received", steps=len(draft.get("steps", [])))
        return draft

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, request_data: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._client.post(self.config.completion_url, json=request_data)
        response.raise_for_status()
        return response.json()


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the outermost JSON object in a completion reply."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("Completion did not contain a JSON object")

    data = json.loads(text[start:end + 1])
    if not isinstance(data, dict):
        raise ValueError("Completion JSON is not an object")
    return data
