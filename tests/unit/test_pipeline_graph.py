"""Unit tests for PipelineGraph construction and queries."""

from __future__ import annotations

import pytest

from flowgate.core.errors import GraphValidationError
from flowgate.core.pipeline_graph import PipelineGraph
from flowgate.models.stages import (
    NO_TOOLS,
    TOOLS_NEEDED,
    EdgeDefinition,
    StageDefinition,
    StageKind,
)


def _stage(stage_id: str, kind: StageKind = StageKind.TRANSFORM, **kw) -> StageDefinition:
    return StageDefinition(stage_id=stage_id, kind=kind, **kw)


def _edge(source: str, target: str, condition: str | None = None) -> EdgeDefinition:
    return EdgeDefinition(
        edge_id=f"{source}-{target}", source=source, target=target, condition=condition
    )


def _linear() -> PipelineGraph:
    return PipelineGraph(
        [_stage("a", StageKind.INPUT), _stage("b"), _stage("c", StageKind.OUTPUT)],
        [_edge("a", "b"), _edge("b", "c")],
    )


class TestGraphValidation:
    def test_linear_graph(self):
        graph = _linear()
        assert graph.stage_ids == ["a", "b", "c"]
        assert graph.entry_stage == "a"

    def test_duplicate_stage_id(self):
        with pytest.raises(GraphValidationError, match="Duplicate stage"):
            PipelineGraph([_stage("a"), _stage("a", StageKind.OUTPUT)], [])

    def test_duplicate_edge_id(self):
        stages = [_stage("a", StageKind.INPUT), _stage("b", StageKind.OUTPUT)]
        with pytest.raises(GraphValidationError, match="Duplicate edge"):
            PipelineGraph(stages, [_edge("a", "b"), _edge("a", "b")])

    def test_unknown_endpoint(self):
        with pytest.raises(GraphValidationError, match="unknown stage"):
            PipelineGraph([_stage("a", StageKind.OUTPUT)], [_edge("a", "ghost")])

    def test_two_unconditional_edges_rejected(self):
        stages = [
            _stage("a", StageKind.INPUT),
            _stage("b", StageKind.OUTPUT),
            _stage("c", StageKind.OUTPUT),
        ]
        with pytest.raises(GraphValidationError, match="unconditional"):
            PipelineGraph(stages, [_edge("a", "b"), _edge("a", "c")])

    def test_duplicate_condition_tags_rejected(self):
        stages = [
            _stage("a", StageKind.DECISION),
            _stage("b", StageKind.OUTPUT),
            _stage("c", StageKind.OUTPUT),
        ]
        with pytest.raises(GraphValidationError, match="duplicate condition"):
            PipelineGraph(stages, [_edge("a", "b", NO_TOOLS), _edge("a", "c", NO_TOOLS)])

    def test_cycle_rejected(self):
        stages = [_stage("a", StageKind.INPUT), _stage("b"), _stage("c"), _stage("d", StageKind.OUTPUT)]
        edges = [_edge("a", "b"), _edge("b", "c"), _edge("c", "b", TOOLS_NEEDED), _edge("c", "d")]
        with pytest.raises(GraphValidationError, match="cycle"):
            PipelineGraph(stages, edges)

    def test_two_entry_stages_rejected(self):
        stages = [_stage("a"), _stage("b"), _stage("c", StageKind.OUTPUT)]
        with pytest.raises(GraphValidationError, match="entry"):
            PipelineGraph(stages, [_edge("a", "c"), _edge("b", "c")])

    def test_missing_output_rejected(self):
        with pytest.raises(GraphValidationError, match="output"):
            PipelineGraph([_stage("a"), _stage("b")], [_edge("a", "b")])

    def test_dead_end_rejected(self):
        stages = [
            _stage("a", StageKind.DECISION),
            _stage("b"),
            _stage("c", StageKind.OUTPUT),
        ]
        edges = [_edge("a", "b", TOOLS_NEEDED), _edge("a", "c", NO_TOOLS)]
        with pytest.raises(GraphValidationError, match="output stages"):
            PipelineGraph(stages, edges)

    def test_branch_without_both_outcomes_rejected(self):
        stages = [_stage("a", StageKind.DECISION), _stage("b", StageKind.OUTPUT)]
        with pytest.raises(GraphValidationError, match="no unconditional fallback"):
            PipelineGraph(stages, [_edge("a", "b", TOOLS_NEEDED)])

    def test_conditional_edges_with_fallback_allowed(self):
        stages = [
            _stage("a", StageKind.INPUT),
            _stage("b", StageKind.OUTPUT),
            _stage("c", StageKind.OUTPUT),
        ]
        graph = PipelineGraph(stages, [_edge("a", "b", "urgent"), _edge("a", "c")])
        assert graph.next_edge("a", "urgent").target == "b"
        assert graph.next_edge("a", "other").target == "c"
        assert graph.next_edge("a").target == "c"


class TestGraphQueries:
    def test_next_edge_on_chat_branch(self, graph: PipelineGraph):
        assert graph.next_edge("route", TOOLS_NEEDED).target == "mcp"
        assert graph.next_edge("route", NO_TOOLS).target == "response"
        assert graph.next_edge("route") is None

    def test_sink_has_no_next_edge(self, graph: PipelineGraph):
        assert graph.next_edge("response") is None

    def test_is_branch_point(self, graph: PipelineGraph):
        assert graph.is_branch_point("route")
        assert not graph.is_branch_point("llm")
        assert not graph.is_branch_point("processing")

    def test_reachable_from(self, graph: PipelineGraph):
        assert set(graph.reachable_from("mcp")) == {"mcp", "llm-followup", "response"}

    def test_credential_stages(self, graph: PipelineGraph):
        assert graph.credential_stages() == ["llm", "mcp", "llm-followup"]

    def test_no_credential_stages(self):
        assert _linear().credential_stages() == []

    def test_outgoing_preserves_declaration_order(self, graph: PipelineGraph):
        assert [e.target for e in graph.outgoing("route")] == ["response", "mcp"]
