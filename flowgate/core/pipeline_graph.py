"""Pipeline graph — named stages joined by declared, optionally conditional edges.

The graph enforces at construction time:
- every edge endpoint is a declared stage;
- at most one unconditional outgoing edge per stage, and additional
  outgoing edges carry distinct condition tags;
- the graph is acyclic, so no stage is revisited within one turn;
- exactly one entry stage and at least one ``output`` stage.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Sequence

from flowgate.core.errors import GraphValidationError
from flowgate.models.stages import (
    NO_TOOLS,
    TOOLS_NEEDED,
    EdgeDefinition,
    StageDefinition,
    StageKind,
)


class PipelineGraph:
    """Directed acyclic graph of pipeline stages.

    Parameters
    ----------
    stages:
        Stage definitions, in display order.
    edges:
        Edge definitions.  Order matters: when several edges could match,
        the first declared wins.
    name:
        Human-readable flow name.
    """

    def __init__(
        self,
        stages: Sequence[StageDefinition],
        edges: Sequence[EdgeDefinition],
        *,
        name: str = "pipeline",
        description: str = "",
    ) -> None:
        self.name = name
        self.description = description
        self._stages: dict[str, StageDefinition] = {}
        for sd in stages:
            if sd.stage_id in self._stages:
                raise GraphValidationError(f"Duplicate stage id: {sd.stage_id!r}")
            self._stages[sd.stage_id] = sd

        self._edges: list[EdgeDefinition] = list(edges)
        # Outgoing / incoming adjacency, preserving declaration order.
        self._outgoing: dict[str, list[EdgeDefinition]] = {sid: [] for sid in self._stages}
        self._incoming: dict[str, list[EdgeDefinition]] = {sid: [] for sid in self._stages}

        seen_edges: set[str] = set()
        for edge in self._edges:
            if edge.edge_id in seen_edges:
                raise GraphValidationError(f"Duplicate edge id: {edge.edge_id!r}")
            seen_edges.add(edge.edge_id)
            for endpoint in (edge.source, edge.target):
                if endpoint not in self._stages:
                    raise GraphValidationError(
                        f"Edge {edge.edge_id!r} references unknown stage {endpoint!r}"
                    )
            self._outgoing[edge.source].append(edge)
            self._incoming[edge.target].append(edge)

        self._validate_outgoing()
        self._validate_no_cycles()
        self._validate_endpoints()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_outgoing(self) -> None:
        for stage_id, edges in self._outgoing.items():
            unconditional = [e for e in edges if e.condition is None]
            if len(unconditional) > 1:
                raise GraphValidationError(
                    f"Stage {stage_id!r} has {len(unconditional)} unconditional "
                    f"outgoing edges; at most one is allowed."
                )
            tags = [e.condition for e in edges if e.condition is not None]
            if len(tags) != len(set(tags)):
                raise GraphValidationError(
                    f"Stage {stage_id!r} has duplicate condition tags: {tags}"
                )

    def _validate_no_cycles(self) -> None:
        """Verify the graph is a DAG using Kahn's algorithm."""
        in_degree = {sid: len(edges) for sid, edges in self._incoming.items()}
        queue = deque(sid for sid, deg in in_degree.items() if deg == 0)
        visited = 0
        while queue:
            node = queue.popleft()
            visited += 1
            for edge in self._outgoing[node]:
                in_degree[edge.target] -= 1
                if in_degree[edge.target] == 0:
                    queue.append(edge.target)
        if visited != len(self._stages):
            raise GraphValidationError(
                f"Pipeline graph has a cycle. Visited {visited}/{len(self._stages)} stages."
            )

    def _validate_endpoints(self) -> None:
        entries = [sid for sid, edges in self._incoming.items() if not edges]
        if len(entries) != 1:
            raise GraphValidationError(
                f"Pipeline graph must have exactly one entry stage, found {entries}"
            )
        if not any(sd.kind == StageKind.OUTPUT for sd in self._stages.values()):
            raise GraphValidationError("Pipeline graph has no output stage.")
        dead_ends = [
            sid for sid, edges in self._outgoing.items()
            if not edges and self._stages[sid].kind != StageKind.OUTPUT
        ]
        if dead_ends:
            raise GraphValidationError(
                f"Stages without outgoing edges must be output stages: {dead_ends}"
            )
        # Without an unconditional fallback, every outcome needs its own edge.
        for sid, edges in self._outgoing.items():
            if not edges or any(e.condition is None for e in edges):
                continue
            tags = {e.condition for e in edges}
            if not self.is_branch_point(sid) or not {TOOLS_NEEDED, NO_TOOLS} <= tags:
                raise GraphValidationError(
                    f"Stage {sid!r} has conditional edges {sorted(tags)} and no "
                    f"unconditional fallback."
                )

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    @property
    def stage_ids(self) -> list[str]:
        """All stage ids in declaration order."""
        return list(self._stages)

    @property
    def stages(self) -> list[StageDefinition]:
        return list(self._stages.values())

    @property
    def edges(self) -> list[EdgeDefinition]:
        return list(self._edges)

    @property
    def entry_stage(self) -> str:
        return next(sid for sid, edges in self._incoming.items() if not edges)

    def get_stage(self, stage_id: str) -> StageDefinition:
        """Return the StageDefinition for a stage_id."""
        return self._stages[stage_id]

    def outgoing(self, stage_id: str) -> list[EdgeDefinition]:
        return list(self._outgoing.get(stage_id, []))

    def next_edge(self, stage_id: str, condition: str | None = None) -> EdgeDefinition | None:
        """Pick the edge leaving *stage_id*.

        With a *condition*, the edge carrying that tag is preferred and the
        unconditional edge is the fallback.  Without one, only the
        unconditional edge qualifies.  ``None`` means *stage_id* is a sink.
        """
        edges = self._outgoing.get(stage_id, [])
        if condition is not None:
            for edge in edges:
                if edge.condition == condition:
                    return edge
        return next((e for e in edges if e.condition is None), None)

    def is_branch_point(self, stage_id: str) -> bool:
        """Whether *stage_id* is a decision routing on the model's tool request."""
        stage = self._stages[stage_id]
        if stage.kind != StageKind.DECISION:
            return False
        tags = {e.condition for e in self._outgoing[stage_id]}
        return TOOLS_NEEDED in tags or NO_TOOLS in tags

    def reachable_from(self, stage_id: str) -> list[str]:
        """All stages reachable from *stage_id* (inclusive), BFS order."""
        result: list[str] = []
        queue = deque([stage_id])
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(e.target for e in self._outgoing[node])
        return result

    def credential_stages(self) -> list[str]:
        """Stages reachable from the entry that require the credential."""
        return [
            sid
            for sid in self.reachable_from(self.entry_stage)
            if self._stages[sid].requires_credential
        ]
