"""Models exchanged with the model capability and the tool transport.

The model capability answers with a tagged union: ``DirectAnswer`` when it
can reply straight away, ``ToolCallRequest`` when it wants one or more
tools invoked first.  The runner dispatches on ``kind`` exhaustively.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class ToolSpec(BaseModel):
    """A tool offered to the model for one turn."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    server_id: str = ""


class ToolInvocation(BaseModel):
    """One tool invocation requested by the model."""

    model_config = ConfigDict(frozen=True)

    call_id: str = Field(default_factory=lambda: f"call-{uuid.uuid4().hex[:12]}")
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class DirectAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["direct_answer"] = "direct_answer"
    text: str


class ToolCallRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["tool_call_request"] = "tool_call_request"
    invocations: tuple[ToolInvocation, ...]
    text: str = ""


ModelResponse = Annotated[
    Union[DirectAnswer, ToolCallRequest], Field(discriminator="kind")
]


class ToolResultMessage(BaseModel):
    """A tool outcome fed back into the follow-up model call."""

    model_config = ConfigDict(frozen=True)

    call_id: str
    tool_name: str
    content: str
    is_error: bool = False


class ModelPrompt(BaseModel):
    """Everything the model capability needs for one completion."""

    model_config = ConfigDict(frozen=True)

    user_message: str
    system_prompt: str = ""
    # Tool requests and results from earlier rounds of the same turn.
    tool_requests: tuple[ToolCallRequest, ...] = ()
    tool_results: tuple[ToolResultMessage, ...] = ()

    def with_round(
        self, request: ToolCallRequest, results: list[ToolResultMessage]
    ) -> ModelPrompt:
        return self.model_copy(
            update={
                "tool_requests": self.tool_requests + (request,),
                "tool_results": self.tool_results + tuple(results),
            }
        )


class ToolOutput(BaseModel):
    """Successful result returned by a tool transport."""

    model_config = ConfigDict(frozen=True)

    content: str
    # The server answered, but reported the tool itself as failing.
    is_error: bool = False
    raw: Any = None


class ToolCallOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"
    DENIED = "denied"


class ToolCallRecord(BaseModel):
    """What happened to one requested tool invocation."""

    model_config = ConfigDict(frozen=True)

    call_id: str
    tool_name: str
    server_id: str | None = None
    arguments: dict[str, Any] = Field(default_factory=dict)
    outcome: ToolCallOutcome
    content: str = ""
    error_kind: str | None = None
    message: str = ""
    round: int = 1

    def as_result_message(self) -> ToolResultMessage:
        if self.outcome == ToolCallOutcome.SUCCEEDED:
            return ToolResultMessage(
                call_id=self.call_id, tool_name=self.tool_name, content=self.content
            )
        return ToolResultMessage(
            call_id=self.call_id,
            tool_name=self.tool_name,
            content=f"Error ({self.error_kind}): {self.message}",
            is_error=True,
        )
