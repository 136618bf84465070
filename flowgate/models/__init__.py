"""Flowgate data models — all Pydantic v2, all frozen (immutable)."""

from flowgate.models.config import RunnerConfig
from flowgate.models.events import RunEvent, RunFailure, RunResult, StageEvent
from flowgate.models.stages import (
    NO_TOOLS,
    TOOLS_NEEDED,
    VALID_TRANSITIONS,
    EdgeDefinition,
    RunStatus,
    StageDefinition,
    StageKind,
    StageStatus,
)
from flowgate.models.tool_servers import (
    DEFAULT_TOOL_SERVERS,
    AlwaysApprove,
    ApprovalDecision,
    ApprovalPolicy,
    NeverApprove,
    NeverExcept,
    ServerStatus,
    ToolServer,
    ToolServerConfig,
)
from flowgate.models.turns import (
    DirectAnswer,
    ModelPrompt,
    ModelResponse,
    ToolCallOutcome,
    ToolCallRecord,
    ToolCallRequest,
    ToolInvocation,
    ToolOutput,
    ToolResultMessage,
    ToolSpec,
)

__all__ = [
    # config
    "RunnerConfig",
    # stages
    "StageKind",
    "StageStatus",
    "RunStatus",
    "StageDefinition",
    "EdgeDefinition",
    "VALID_TRANSITIONS",
    "TOOLS_NEEDED",
    "NO_TOOLS",
    # tool servers
    "ServerStatus",
    "ApprovalDecision",
    "AlwaysApprove",
    "NeverApprove",
    "NeverExcept",
    "ApprovalPolicy",
    "ToolServerConfig",
    "ToolServer",
    "DEFAULT_TOOL_SERVERS",
    # turns
    "ToolSpec",
    "ToolInvocation",
    "DirectAnswer",
    "ToolCallRequest",
    "ModelResponse",
    "ToolResultMessage",
    "ModelPrompt",
    "ToolOutput",
    "ToolCallOutcome",
    "ToolCallRecord",
    # events
    "RunFailure",
    "StageEvent",
    "RunEvent",
    "RunResult",
]
