"""External collaborators: the model capability and the tool transport."""

from flowgate.capabilities.base import (
    EchoModel,
    ModelCapability,
    ModelResult,
    NullTransport,
    StageHandler,
    ToolTransport,
)
from flowgate.capabilities.groq import GroqModel
from flowgate.capabilities.mcp_transport import McpToolTransport

__all__ = [
    # protocols
    "ModelCapability",
    "ToolTransport",
    "ModelResult",
    "StageHandler",
    # offline defaults
    "EchoModel",
    "NullTransport",
    # adapters
    "GroqModel",
    "McpToolTransport",
]
