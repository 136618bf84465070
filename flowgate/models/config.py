"""Runner configuration model."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RunnerConfig(BaseModel):
    """Per-runner limits and deadlines.

    Deadlines are in seconds; ``None`` waits indefinitely.  Any deadline that
    expires (model, tool or approval) fails the in-flight stage and the
    run with ``timeout``.
    """

    model_config = ConfigDict(frozen=True)

    max_tool_rounds: int = Field(default=3, ge=1)
    model_timeout: float | None = Field(default=None, gt=0)
    tool_timeout: float | None = Field(default=None, gt=0)
    approval_timeout: float | None = Field(default=None, gt=0)
    system_prompt: str = ""
