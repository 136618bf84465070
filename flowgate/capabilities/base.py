"""Protocols for the external collaborators the runner suspends on.

Defines ``ModelCapability`` and ``ToolTransport`` (any object with the
matching async method satisfies them) along with ``StageHandler`` for
transform stages (speech-to-text, text-to-speech, input shaping).

Priority chain for a deployment:
1. **Adapters in this package** — ``GroqModel`` and ``McpToolTransport``.
2. **Custom backends** — user-provided Protocol implementations.
3. **EchoModel** / **NullTransport** — offline defaults for demos and tests.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol, Union, runtime_checkable

from flowgate.core.errors import TransportFault
from flowgate.models.tool_servers import ToolServer
from flowgate.models.turns import (
    DirectAnswer,
    ModelPrompt,
    ToolCallRequest,
    ToolOutput,
    ToolSpec,
)

ModelResult = Union[DirectAnswer, ToolCallRequest]

# Transform-stage handler: (run_id, payload) -> payload for the next stage.
StageHandler = Callable[[str, dict[str, Any]], Awaitable[dict[str, Any]]]


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ModelCapability(Protocol):
    """Protocol for language-model backends.

    The runner treats a completion as one opaque suspension point.
    Implementations raise ``TransportFault`` when the call fails.
    """

    async def complete(
        self, prompt: ModelPrompt, tools: Sequence[ToolSpec]
    ) -> ModelResult:
        """Answer *prompt*, optionally requesting invocations of *tools*."""
        ...


@runtime_checkable
class ToolTransport(Protocol):
    """Protocol for tool-server transports.

    Implementations raise ``TransportFault`` on any failure.
    """

    async def invoke(
        self, server: ToolServer, tool_name: str, arguments: dict[str, Any]
    ) -> ToolOutput:
        """Invoke *tool_name* on *server* and return its output."""
        ...


# ---------------------------------------------------------------------------
# Offline defaults
# ---------------------------------------------------------------------------


class EchoModel:
    """Model stand-in that answers directly by echoing the user's message.

    When tool results are present it summarises them instead.  Suitable for
    demos and offline development; never requests tools.
    """

    async def complete(
        self, prompt: ModelPrompt, tools: Sequence[ToolSpec]
    ) -> ModelResult:
        if prompt.tool_results:
            lines = [f"{r.tool_name}: {r.content}" for r in prompt.tool_results]
            return DirectAnswer(text="\n".join(lines))
        return DirectAnswer(text=prompt.user_message)


class NullTransport:
    """Transport that refuses every invocation."""

    async def invoke(
        self, server: ToolServer, tool_name: str, arguments: dict[str, Any]
    ) -> ToolOutput:
        raise TransportFault(f"No tool transport configured for {server.id}.{tool_name}")
