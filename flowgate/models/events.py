"""Observer events and run results."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from flowgate.core.errors import ErrorKind
from flowgate.models.stages import RunStatus, StageStatus
from flowgate.models.turns import ToolCallRecord


class RunFailure(BaseModel):
    """Terminal failure of a run, queryable after the fact."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    stage_id: str | None = None


class StageEvent(BaseModel):
    """Emitted on every stage status transition."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    stage_id: str
    status: StageStatus
    message: str = ""
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class RunEvent(BaseModel):
    """Emitted when the run as a whole changes status."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    status: RunStatus
    failure: RunFailure | None = None
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class RunResult(BaseModel):
    """Summary of a finished (or cancelled) run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    status: RunStatus
    answer: str | None = None
    failure: RunFailure | None = None
    visited_stages: list[str] = Field(default_factory=list)
    taken_edges: list[str] = Field(default_factory=list)
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    tool_rounds: int = 0

    @property
    def used_tools(self) -> bool:
        return self.tool_rounds > 0
