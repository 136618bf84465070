"""Tool-server models — registry entries and their approval policies.

The approval policy is a tagged union discriminated on ``kind``:

* ``AlwaysApprove`` — every tool call needs explicit external approval.
* ``NeverApprove`` — every tool call is auto-approved.
* ``NeverExcept`` — auto-approved except for the listed tool names.

For compatibility with existing server definitions, the bare strings
``"always"`` / ``"never"`` and the object ``{"never": {"tool_names": [...]}}``
are accepted wherever a policy is expected.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServerStatus(str, Enum):
    """Last-known health of a tool server."""

    UNKNOWN = "unknown"
    CONNECTED = "connected"
    ERROR = "error"


class ApprovalDecision(str, Enum):
    """Outcome of resolving the approval policy for one tool invocation."""

    REQUIRES_APPROVAL = "requires_approval"
    AUTO_APPROVED = "auto_approved"
    TOOL_UNAVAILABLE = "tool_unavailable"


# ---------------------------------------------------------------------------
# Approval policy union
# ---------------------------------------------------------------------------


class AlwaysApprove(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["always"] = "always"

    def requires_approval(self, tool_name: str) -> bool:
        return True


class NeverApprove(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["never"] = "never"

    def requires_approval(self, tool_name: str) -> bool:
        return False


class NeverExcept(BaseModel):
    """Auto-approve everything except ``tool_names``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["never_except"] = "never_except"
    tool_names: frozenset[str] = frozenset()

    def requires_approval(self, tool_name: str) -> bool:
        return tool_name in self.tool_names


ApprovalPolicy = Annotated[
    Union[AlwaysApprove, NeverApprove, NeverExcept],
    Field(discriminator="kind"),
]


def coerce_policy(value: Any) -> Any:
    """Translate legacy policy shapes into the tagged-union form."""
    if isinstance(value, str):
        if value in ("always", "never"):
            return {"kind": value}
        raise ValueError(f"Unknown approval policy: {value!r}")
    if isinstance(value, dict) and "kind" not in value and "never" in value:
        names = (value.get("never") or {}).get("tool_names", [])
        return {"kind": "never_except", "tool_names": names}
    return value


# ---------------------------------------------------------------------------
# Server entry
# ---------------------------------------------------------------------------


class ToolServerConfig(BaseModel):
    """Caller-supplied definition used to add a server to the registry."""

    model_config = ConfigDict(frozen=True)

    label: str = ""
    description: str = ""
    endpoint: str = ""
    enabled: bool = True
    approval_policy: ApprovalPolicy = Field(default_factory=NeverApprove)
    allowed_tools: frozenset[str] | None = None
    authorization: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("approval_policy", mode="before")
    @classmethod
    def _legacy_policy(cls, value: Any) -> Any:
        return coerce_policy(value)


class ToolServer(ToolServerConfig):
    """A registered tool server.

    Instances are frozen; the registry replaces them wholesale on every
    update so readers never observe a half-applied change.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: ServerStatus = ServerStatus.UNKNOWN
    last_error: str | None = None

    def exposes(self, tool_name: str) -> bool:
        """Whether this server may offer *tool_name* to the pipeline."""
        return self.allowed_tools is None or tool_name in self.allowed_tools

    def request_headers(self) -> dict[str, str]:
        """Transport headers including the authorization header, if any."""
        headers = dict(self.headers)
        if self.authorization:
            headers.setdefault("Authorization", self.authorization)
        return headers


# The stock catalogue.  Placeholder credentials in endpoints/headers must be
# replaced before enabling; only Firecrawl works without a key.
DEFAULT_TOOL_SERVERS: list[ToolServer] = [
    ToolServer(
        id="tavily-search",
        label="Tavily",
        description="Real-time web search and research capabilities",
        endpoint="https://mcp.tavily.com/mcp/?tavilyApiKey=YOUR_TAVILY_API_KEY",
        enabled=False,
        approval_policy=NeverApprove(),
        allowed_tools=frozenset({"web_search", "commentary"}),
    ),
    ToolServer(
        id="parallel-search",
        label="Parallel",
        description="Advanced web search with parallel processing",
        endpoint="https://mcp.parallel.ai/v1beta/search_mcp/",
        enabled=False,
        approval_policy=NeverApprove(),
        headers={"x-api-key": "YOUR_PARALLEL_API_KEY"},
    ),
    ToolServer(
        id="huggingface-models",
        label="hf",
        description="Access to Hugging Face model inference and datasets",
        endpoint="https://huggingface.co/mcp",
        enabled=False,
        approval_policy=NeverApprove(),
        authorization="Bearer YOUR_HF_TOKEN",
    ),
    ToolServer(
        id="browseruse",
        label="browseruse",
        description="Browser automation and web interaction capabilities",
        endpoint="https://api.browser-use.com/mcp/",
        enabled=False,
        approval_policy=NeverApprove(),
        headers={"X-Browser-Use-API-Key": "YOUR_BROWSER_USE_API_KEY"},
    ),
    ToolServer(
        id="firecrawl",
        label="firecrawl",
        description="Web scraping and content extraction capabilities",
        endpoint="https://mcp.firecrawl.dev/YOUR-API-KEY/v2/mcp",
        enabled=True,
        approval_policy=NeverApprove(),
    ),
]
