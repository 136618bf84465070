"""Groq model capability over the OpenAI-compatible chat completions API.

Every call reads the bearer credential from the ``CredentialGate`` at call
time, so a key replaced between turns takes effect on the next call
without rebuilding the adapter.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from openai import AsyncOpenAI, OpenAIError

from flowgate.capabilities.base import ModelResult
from flowgate.core.credential_gate import CredentialGate
from flowgate.core.errors import MissingCredentialError, TransportFault
from flowgate.models.turns import (
    DirectAnswer,
    ModelPrompt,
    ToolCallRequest,
    ToolInvocation,
    ToolSpec,
)

if TYPE_CHECKING:
    from flowgate.config import FlowgateSettings

logger = logging.getLogger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_MODEL = "llama-3.3-70b-versatile"


class GroqModel:
    """``ModelCapability`` backed by Groq chat completions.

    Parameters
    ----------
    gate:
        Credential gate supplying the API key.
    model:
        Chat model name.
    base_url:
        OpenAI-compatible endpoint.
    temperature:
        Sampling temperature; ``None`` uses the server default.
    """

    def __init__(
        self,
        gate: CredentialGate,
        *,
        model: str = DEFAULT_MODEL,
        base_url: str = GROQ_BASE_URL,
        temperature: float | None = None,
    ) -> None:
        self.gate = gate
        self.model = model
        self.base_url = base_url
        self.temperature = temperature
        self._client: AsyncOpenAI | None = None
        self._client_key: str = ""

    @classmethod
    def from_settings(cls, gate: CredentialGate, settings: FlowgateSettings) -> GroqModel:
        return cls(gate, model=settings.model_name, base_url=settings.model_base_url)

    # ------------------------------------------------------------------
    # ModelCapability
    # ------------------------------------------------------------------

    async def complete(
        self, prompt: ModelPrompt, tools: Sequence[ToolSpec]
    ) -> ModelResult:
        request: dict[str, Any] = {
            "model": self.model,
            "messages": build_messages(prompt),
        }
        if tools:
            request["tools"] = [tool_schema(t) for t in tools]
            request["tool_choice"] = "auto"
        if self.temperature is not None:
            request["temperature"] = self.temperature

        logger.debug(
            "Chat completion: model=%s messages=%d tools=%d",
            self.model, len(request["messages"]), len(tools),
        )
        try:
            response = await self._get_client().chat.completions.create(**request)
        except OpenAIError as exc:
            raise TransportFault(f"Groq request failed: {exc}") from exc

        if not response.choices:
            raise TransportFault("Groq returned no choices")
        return parse_message(response.choices[0].message)

    def _get_client(self) -> AsyncOpenAI:
        key = self.gate.credential
        if not key:
            raise MissingCredentialError("A valid API key is required for model calls")
        if self._client is None or key != self._client_key:
            self._client = AsyncOpenAI(api_key=key, base_url=self.base_url)
            self._client_key = key
        return self._client


# ---------------------------------------------------------------------------
# Wire conversion
# ---------------------------------------------------------------------------


def tool_schema(spec: ToolSpec) -> dict[str, Any]:
    """OpenAI function-tool entry for *spec*."""
    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": spec.input_schema,
        },
    }


def build_messages(prompt: ModelPrompt) -> list[dict[str, Any]]:
    """Render *prompt* as chat messages, replaying earlier tool rounds in order."""
    messages: list[dict[str, Any]] = []
    if prompt.system_prompt:
        messages.append({"role": "system", "content": prompt.system_prompt})
    messages.append({"role": "user", "content": prompt.user_message})

    results = {r.call_id: r for r in prompt.tool_results}
    for request in prompt.tool_requests:
        messages.append({
            "role": "assistant",
            "content": request.text or None,
            "tool_calls": [
                {
                    "id": inv.call_id,
                    "type": "function",
                    "function": {
                        "name": inv.tool_name,
                        "arguments": json.dumps(inv.arguments),
                    },
                }
                for inv in request.invocations
            ],
        })
        for inv in request.invocations:
            result = results.get(inv.call_id)
            if result is None:
                continue
            messages.append({
                "role": "tool",
                "tool_call_id": inv.call_id,
                "content": result.content,
            })
    return messages


def parse_message(message: Any) -> ModelResult:
    """Turn a chat completion message into a ``DirectAnswer`` or ``ToolCallRequest``."""
    tool_calls = getattr(message, "tool_calls", None) or []
    text = getattr(message, "content", None) or ""
    if not tool_calls:
        return DirectAnswer(text=text)

    invocations: list[ToolInvocation] = []
    for call in tool_calls:
        raw_args = call.function.arguments or "{}"
        try:
            arguments = json.loads(raw_args)
        except json.JSONDecodeError as exc:
            raise TransportFault(
                f"Model sent malformed arguments for {call.function.name}: {raw_args!r}"
            ) from exc
        if not isinstance(arguments, dict):
            arguments = {"input": arguments}
        invocations.append(
            ToolInvocation(call_id=call.id, tool_name=call.function.name, arguments=arguments)
        )
    return ToolCallRequest(invocations=tuple(invocations), text=text)
