"""Stage graph and stage lifecycle models.

A pipeline is a directed graph of named stages.  Each stage of a run moves
through a strict lifecycle (``StageStatus``) and the run as a whole moves
through ``RunStatus``.  Transitions are enforced by ``StageMachine``.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageKind(str, Enum):
    """What a stage does when the runner enters it."""

    INPUT = "input"
    TRANSFORM = "transform"
    DECISION = "decision"
    MODEL_CALL = "model_call"
    TOOL_CALL = "tool_call"
    OUTPUT = "output"


class StageStatus(str, Enum):
    """Per-stage, per-run lifecycle status."""

    IDLE = "idle"
    ACTIVE = "active"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Lifecycle of a single pipeline run (one user turn)."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Valid stage transitions.  Statuses never regress; only a full-run reset
# returns stages to IDLE, and that bypasses this table.
VALID_TRANSITIONS: dict[StageStatus, set[StageStatus]] = {
    StageStatus.IDLE: {StageStatus.ACTIVE},
    StageStatus.ACTIVE: {
        StageStatus.PROCESSING,
        StageStatus.COMPLETED,
        StageStatus.FAILED,
    },
    StageStatus.PROCESSING: {StageStatus.COMPLETED, StageStatus.FAILED},
    StageStatus.COMPLETED: set(),  # terminal
    StageStatus.FAILED: set(),  # terminal
}

# Statuses that count as "the stage currently executing".
IN_FLIGHT_STATUSES: frozenset[StageStatus] = frozenset(
    {StageStatus.ACTIVE, StageStatus.PROCESSING}
)

TERMINAL_RUN_STATUSES: frozenset[RunStatus] = frozenset(
    {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}
)

# Condition tags used on the outgoing edges of a branch-point decision.
TOOLS_NEEDED = "tools-needed"
NO_TOOLS = "no-tools"


class StageDefinition(BaseModel):
    """A node of the pipeline graph."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    kind: StageKind
    display_name: str = ""
    subtitle: str = ""
    requires_credential: bool = False

    @property
    def label(self) -> str:
        return self.display_name or self.stage_id


class EdgeDefinition(BaseModel):
    """A declared transition between two stages.

    ``condition`` is ``None`` for the (single) unconditional edge of a
    stage; additional outgoing edges carry a distinct tag such as
    ``tools-needed`` or ``no-tools``.
    """

    model_config = ConfigDict(frozen=True)

    edge_id: str
    source: str
    target: str
    condition: str | None = None
    label: str = ""
