"""
AI assistant collaborator.

Two calls are used by the session:
- suggest_properties(component, description) -> extra properties for one component
- generate_report(document, name, kind) -> a threat report as text

HttpAssistantClient talks to any OpenAI-compatible chat-completions
endpoint. Models often wrap JSON answers in markdown fences; those are
stripped before parsing.
"""

import json
import logging
import re
from typing import Any, Optional, Protocol

import httpx

from canvas_core.errors import AssistantError
from canvas_core.models import Component, ModelKind

logger = logging.getLogger(__name__)

SUGGEST_SYSTEM_PROMPT = (
    "You are an AI assistant that suggests properties for components in a threat model diagram. "
    "Consider the STRIDE model when suggesting properties. Do not repeat existing properties. "
    "Return only a JSON object with a single key \"suggestedPropertiesJson\" whose value is a JSON "
    "string of new key-value pairs, or null if you have nothing to add."
)

REPORT_SYSTEM_PROMPT = (
    "You are a security analyst. Produce a threat report for the threat model you are given, "
    "organised by STRIDE category, listing affected components, risks and mitigations. "
    "Answer in markdown."
)


class AssistantClient(Protocol):
    """What the session controller needs from the AI assistant."""

    async def suggest_properties(
        self, component: Component, description: Optional[str] = None
    ) -> dict[str, Any]:
        ...

    async def generate_report(self, document: dict[str, Any], name: str, kind: ModelKind) -> str:
        ...


def strip_fences(content: str) -> str:
    """Remove a surrounding ```json ... ``` fence if present."""
    content = re.sub(r"^```(?:json)?\s*", "", content.strip())
    content = re.sub(r"\s*```$", "", content.strip())
    return content


def parse_suggestions(content: str) -> dict[str, Any]:
    """
    Extract suggested properties from a model answer.

    Accepts the structured {"suggestedPropertiesJson": "<json string>"}
    shape as well as a bare JSON object. Anything unusable yields {}.
    """
    try:
        data = json.loads(strip_fences(content))
    except json.JSONDecodeError:
        logger.warning("Assistant returned invalid JSON for property suggestions")
        return {}

    if isinstance(data, dict) and "suggestedPropertiesJson" in data:
        inner = data["suggestedPropertiesJson"]
        if inner is None:
            return {}
        if isinstance(inner, dict):
            return inner
        try:
            data = json.loads(inner)
        except (TypeError, json.JSONDecodeError):
            logger.warning("Assistant returned an invalid suggestedPropertiesJson string")
            return {}

    if not isinstance(data, dict):
        logger.warning(f"Assistant suggestions parsed to {type(data).__name__}, expected object")
        return {}
    return data


class HttpAssistantClient:
    """Assistant backed by a chat-completions HTTP API."""

    def __init__(
        self,
        base_url: str,
        model: str,
        temperature: float = 0.2,
        timeout: float = 300.0,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self._timeout = timeout
        self._api_key = api_key
        self._transport = transport

    async def _complete(self, messages: list[dict[str, str]]) -> str:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json={
                        "model": self.model,
                        "messages": messages,
                        "temperature": self.temperature,
                    },
                    headers=headers,
                )
                response.raise_for_status()
                return response.json()["choices"][0]["message"]["content"]
        except httpx.HTTPError as e:
            raise AssistantError(f"Assistant request failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise AssistantError(f"Unexpected assistant response: {e}") from e

    async def suggest_properties(
        self, component: Component, description: Optional[str] = None
    ) -> dict[str, Any]:
        user = (
            f"Component Type: {component.type}\n"
            f"Existing Properties (JSON): {json.dumps(component.properties)}"
        )
        if description:
            user += f"\nDiagram Description: {description}"

        content = await self._complete([
            {"role": "system", "content": SUGGEST_SYSTEM_PROMPT},
            {"role": "user", "content": user},
        ])
        return parse_suggestions(content)

    async def generate_report(self, document: dict[str, Any], name: str, kind: ModelKind) -> str:
        user = (
            f"Model name: {name}\n"
            f"Model kind: {ModelKind(kind).value}\n"
            f"Model (JSON):\n{json.dumps(document, indent=2)}"
        )
        content = await self._complete([
            {"role": "system", "content": REPORT_SYSTEM_PROMPT},
            {"role": "user", "content": user},
        ])
        report = content.strip()
        if not report:
            raise AssistantError("Assistant returned an empty report")
        return report
