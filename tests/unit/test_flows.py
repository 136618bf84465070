"""Tests for the stock chat and voice flows."""

from __future__ import annotations

import pytest

from flowgate.flows import FLOWS, chat_flow, get_flow, voice_flow
from flowgate.models.stages import NO_TOOLS, TOOLS_NEEDED, StageKind


class TestChatFlow:
    def test_shape(self):
        graph = chat_flow()
        assert graph.name == "chat"
        assert graph.entry_stage == "input"
        assert [s.stage_id for s in graph.stages if s.kind == StageKind.OUTPUT] == ["response"]
        assert graph.is_branch_point("route")

    def test_branch_targets(self):
        graph = chat_flow()
        assert graph.next_edge("route", NO_TOOLS).target == "response"
        assert graph.next_edge("route", TOOLS_NEEDED).target == "mcp"

    def test_tool_branch_rejoins_through_follow_up(self):
        graph = chat_flow()
        assert graph.next_edge("mcp", None).target == "llm-followup"
        assert graph.get_stage("llm-followup").kind == StageKind.MODEL_CALL
        assert graph.next_edge("llm-followup", None).target == "response"

    def test_edge_labels(self):
        labels = {e.edge_id: e.label for e in chat_flow().edges}
        assert labels["route-response"] == "No Tools"
        assert labels["route-mcp"] == "Tools Needed"


class TestVoiceFlow:
    def test_shape(self):
        graph = voice_flow()
        assert graph.name == "voice"
        assert graph.entry_stage == "start"
        assert [s.stage_id for s in graph.stages if s.kind == StageKind.OUTPUT] == ["audio-response"]

    def test_credential_stages(self):
        assert voice_flow().credential_stages() == ["stt", "llm", "tts", "mcp", "llm-followup"]

    def test_both_branches_reach_speech_synthesis(self):
        graph = voice_flow()
        assert graph.next_edge("route", NO_TOOLS).target == "tts"
        assert graph.next_edge("llm-followup", None).target == "tts"
        assert "audio-response" in graph.reachable_from("mcp")

    def test_voice_gating_labels(self):
        labels = {e.edge_id: e.label for e in voice_flow().edges}
        assert labels["e-mic-vad"] == "Yes"
        assert labels["e-vad-stt"] == "Voice Detected"


class TestFlowLookup:
    def test_get_flow_builds_fresh_graphs(self):
        assert get_flow("chat") is not get_flow("chat")

    @pytest.mark.parametrize("name", sorted(FLOWS))
    def test_every_stock_flow_validates(self, name):
        graph = get_flow(name)
        assert graph.name == name

    def test_unknown_flow(self):
        with pytest.raises(KeyError, match="available: chat, voice"):
            get_flow("video")
