"""Chat agent flow — a typed message answered by the model, with an optional tool branch.

    input -> processing -> llm -> route --no-tools-----------------> response
                                        \\-tools-needed-> mcp -> llm-followup -/
"""

from __future__ import annotations

from flowgate.core.pipeline_graph import PipelineGraph
from flowgate.models.stages import (
    NO_TOOLS,
    TOOLS_NEEDED,
    EdgeDefinition,
    StageDefinition,
    StageKind,
)

CHAT_STAGES: list[StageDefinition] = [
    StageDefinition(
        stage_id="input", kind=StageKind.INPUT,
        display_name="Message Input", subtitle="User Types",
    ),
    StageDefinition(
        stage_id="processing", kind=StageKind.TRANSFORM,
        display_name="Processing", subtitle="Text Analysis",
    ),
    StageDefinition(
        stage_id="llm", kind=StageKind.MODEL_CALL,
        display_name="LLM", subtitle="AI Response", requires_credential=True,
    ),
    StageDefinition(
        stage_id="route", kind=StageKind.DECISION,
        display_name="Tools?", subtitle="Branch",
    ),
    StageDefinition(
        stage_id="mcp", kind=StageKind.TOOL_CALL,
        display_name="MCP Tools", subtitle="Tool Execution", requires_credential=True,
    ),
    StageDefinition(
        stage_id="llm-followup", kind=StageKind.MODEL_CALL,
        display_name="LLM", subtitle="Tool Results", requires_credential=True,
    ),
    StageDefinition(
        stage_id="response", kind=StageKind.OUTPUT,
        display_name="Response", subtitle="Display Result",
    ),
]

CHAT_EDGES: list[EdgeDefinition] = [
    EdgeDefinition(edge_id="input-processing", source="input", target="processing"),
    EdgeDefinition(edge_id="processing-llm", source="processing", target="llm"),
    EdgeDefinition(edge_id="llm-route", source="llm", target="route"),
    EdgeDefinition(
        edge_id="route-response", source="route", target="response",
        condition=NO_TOOLS, label="No Tools",
    ),
    EdgeDefinition(
        edge_id="route-mcp", source="route", target="mcp",
        condition=TOOLS_NEEDED, label="Tools Needed",
    ),
    EdgeDefinition(edge_id="mcp-followup", source="mcp", target="llm-followup"),
    EdgeDefinition(edge_id="followup-response", source="llm-followup", target="response"),
]


def chat_flow() -> PipelineGraph:
    """Build a fresh chat agent graph."""
    return PipelineGraph(
        CHAT_STAGES,
        CHAT_EDGES,
        name="chat",
        description="Chat Agent Flow",
    )
