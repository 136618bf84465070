"""Flowgate: stage-graph runner for conversational agents with gated MCP tool calls.

A user turn enters the ``PipelineRunner``, which walks a ``PipelineGraph``
stage by stage:
  - a ``CredentialGate`` must hold before any credential-requiring stage
  - the model capability answers directly or requests tool invocations
  - requested tools are routed through the ``ToolServerRegistry``, whose
    per-server approval policy decides whether a human must approve
  - tool results feed a follow-up model call before the output stage
  - every stage transition is published on the ``EventBus``

Stock flows: ``chat`` and ``voice`` (see ``flowgate.flows``).
"""

__version__ = "0.1.0"
__description__ = (
    "Stage-graph runner for conversational agents with gated MCP tool calls"
)

from flowgate.core.runner import PipelineRunner
from flowgate.core.credential_gate import CredentialGate
from flowgate.core.tool_registry import ToolServerRegistry
from flowgate.core.pipeline_graph import PipelineGraph
from flowgate.flows import get_flow

__all__ = [
    "PipelineRunner",
    "CredentialGate",
    "ToolServerRegistry",
    "PipelineGraph",
    "get_flow",
    "__version__",
]
