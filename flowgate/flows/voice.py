"""Voice agent flow — speech in, speech out.

The microphone and voice-activity stages have no built-in behaviour; a
deployment registers handlers for them (and for ``stt``/``tts``) on the
runner.  Without handlers they pass straight through, which is what the
CLI and the tests rely on.
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

VOICE_STAGES: list[StageDefinition] = [
    StageDefinition(
        stage_id="start", kind=StageKind.INPUT,
        display_name="Start", subtitle="Control",
    ),
    StageDefinition(
        stage_id="mic-on", kind=StageKind.DECISION,
        display_name="Mic On?", subtitle="Input",
    ),
    StageDefinition(
        stage_id="vad", kind=StageKind.DECISION,
        display_name="VAD", subtitle="Voice Activity",
    ),
    StageDefinition(
        stage_id="stt", kind=StageKind.TRANSFORM,
        display_name="STT", subtitle="Speech to Text", requires_credential=True,
    ),
    StageDefinition(
        stage_id="llm", kind=StageKind.MODEL_CALL,
        display_name="LLM", subtitle="Inference", requires_credential=True,
    ),
    StageDefinition(
        stage_id="route", kind=StageKind.DECISION,
        display_name="Tools?", subtitle="Branch",
    ),
    StageDefinition(
        stage_id="mcp", kind=StageKind.TOOL_CALL,
        display_name="MCP", subtitle="MCP Tools", requires_credential=True,
    ),
    StageDefinition(
        stage_id="llm-followup", kind=StageKind.MODEL_CALL,
        display_name="LLM", subtitle="Tool Results", requires_credential=True,
    ),
    StageDefinition(
        stage_id="tts", kind=StageKind.TRANSFORM,
        display_name="TTS", subtitle="Text to Speech", requires_credential=True,
    ),
    StageDefinition(
        stage_id="audio-response", kind=StageKind.OUTPUT,
        display_name="Audio Response", subtitle="Output",
    ),
]

VOICE_EDGES: list[EdgeDefinition] = [
    EdgeDefinition(edge_id="e-start-mic", source="start", target="mic-on"),
    EdgeDefinition(edge_id="e-mic-vad", source="mic-on", target="vad", label="Yes"),
    EdgeDefinition(edge_id="e-vad-stt", source="vad", target="stt", label="Voice Detected"),
    EdgeDefinition(edge_id="e-stt-llm", source="stt", target="llm"),
    EdgeDefinition(edge_id="e-llm-route", source="llm", target="route"),
    EdgeDefinition(
        edge_id="e-route-tts", source="route", target="tts",
        condition=NO_TOOLS, label="No Tools",
    ),
    EdgeDefinition(
        edge_id="e-route-mcp", source="route", target="mcp",
        condition=TOOLS_NEEDED, label="Tools Needed",
    ),
    EdgeDefinition(edge_id="e-mcp-followup", source="mcp", target="llm-followup"),
    EdgeDefinition(edge_id="e-followup-tts", source="llm-followup", target="tts"),
    EdgeDefinition(edge_id="e-tts-audio", source="tts", target="audio-response"),
]


def voice_flow() -> PipelineGraph:
    """Build a fresh voice agent graph."""
    return PipelineGraph(
        VOICE_STAGES,
        VOICE_EDGES,
        name="voice",
        description="Voice Agent Flow",
    )
