"""Shared test fixtures for Flowgate."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

import pytest

from flowgate.core.approvals import ApprovalBroker
from flowgate.core.credential_gate import CredentialGate
from flowgate.core.errors import TransportFault
from flowgate.core.event_bus import EventBus
from flowgate.core.pipeline_graph import PipelineGraph
from flowgate.core.runner import PipelineRunner
from flowgate.core.tool_registry import ToolServerRegistry
from flowgate.flows import chat_flow
from flowgate.models.config import RunnerConfig
from flowgate.models.tool_servers import (
    AlwaysApprove,
    NeverApprove,
    NeverExcept,
    ToolServer,
)
from flowgate.models.turns import (
    DirectAnswer,
    ModelPrompt,
    ToolCallRequest,
    ToolInvocation,
    ToolOutput,
    ToolSpec,
)

VALID_KEY = "gsk_testKey123"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class ScriptedModel:
    """Model capability replaying a fixed script of responses.

    Each entry is a response, an exception to raise, or a callable
    ``(prompt, tools)`` returning either (optionally awaitable).  Once the
    script runs out every call answers ``DirectAnswer("done")``.
    """

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.prompts: list[ModelPrompt] = []
        self.tools: list[list[ToolSpec]] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def complete(self, prompt: ModelPrompt, tools: list[ToolSpec]) -> Any:
        self.prompts.append(prompt)
        self.tools.append(list(tools))
        if not self.responses:
            return DirectAnswer(text="done")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(prompt, tools)
            if inspect.isawaitable(response):
                response = await response
        return response


class RecordingTransport:
    """Tool transport recording every invocation.

    Parameters
    ----------
    outputs:
        Tool name -> content returned.
    faults:
        Tool names whose invocation raises ``TransportFault``.
    delay:
        Seconds to sleep before answering.
    """

    def __init__(
        self,
        outputs: dict[str, str] | None = None,
        *,
        faults: set[str] | None = None,
        errors: set[str] | None = None,
        delay: float | None = None,
    ) -> None:
        self.outputs = outputs or {}
        self.faults = faults or set()
        self.errors = errors or set()
        self.delay = delay
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    async def invoke(
        self, server: ToolServer, tool_name: str, arguments: dict[str, Any]
    ) -> ToolOutput:
        self.calls.append((server.id, tool_name, dict(arguments)))
        if self.delay is not None:
            await asyncio.sleep(self.delay)
        if tool_name in self.faults:
            raise TransportFault(f"{server.id} unreachable")
        if tool_name in self.errors:
            return ToolOutput(content=f"{tool_name} rejected the input", is_error=True)
        return ToolOutput(content=self.outputs.get(tool_name, f"{tool_name} result"))


def tool_request(*tool_names: str, **arguments: Any) -> ToolCallRequest:
    """A ToolCallRequest invoking each of *tool_names* with *arguments*."""
    return ToolCallRequest(
        invocations=tuple(
            ToolInvocation(tool_name=name, arguments=dict(arguments)) for name in tool_names
        )
    )


async def wait_until(predicate: Callable[[], bool], *, attempts: int = 200) -> None:
    """Yield to the loop until *predicate* holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached")


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "fg-test-run-001"


@pytest.fixture
def gate() -> CredentialGate:
    """A credential gate holding a valid key."""
    gate = CredentialGate()
    gate.set(VALID_KEY)
    return gate


@pytest.fixture
def empty_gate() -> CredentialGate:
    return CredentialGate()


@pytest.fixture
def graph() -> PipelineGraph:
    """The stock chat flow."""
    return chat_flow()


@pytest.fixture
def servers() -> list[ToolServer]:
    """Three servers covering each approval policy."""
    return [
        ToolServer(
            id="search",
            label="Search",
            endpoint="https://search.test/mcp",
            approval_policy=NeverApprove(),
        ),
        ToolServer(
            id="files",
            label="Files",
            endpoint="https://files.test/mcp",
            approval_policy=AlwaysApprove(),
        ),
        ToolServer(
            id="shell",
            label="Shell",
            endpoint="https://shell.test/mcp",
            approval_policy=NeverExcept(tool_names=frozenset({"run_command"})),
        ),
    ]


@pytest.fixture
def registry(servers: list[ToolServer]) -> ToolServerRegistry:
    return ToolServerRegistry(servers=servers)


@pytest.fixture
def catalog() -> dict[str, list[ToolSpec]]:
    """Tools advertised by each test server."""
    return {
        "search": [ToolSpec(name="web_search", description="Search the web")],
        "files": [ToolSpec(name="read_file", description="Read a file")],
        "shell": [
            ToolSpec(name="list_dir", description="List a directory"),
            ToolSpec(name="run_command", description="Run a shell command"),
        ],
    }


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


# ---------------------------------------------------------------------------
# Runner factory
# ---------------------------------------------------------------------------


@pytest.fixture
def make_runner(
    graph: PipelineGraph,
    gate: CredentialGate,
    registry: ToolServerRegistry,
    catalog: dict[str, list[ToolSpec]],
    bus: EventBus,
) -> Callable[..., PipelineRunner]:
    """Factory fixture: build a PipelineRunner with test doubles by default."""

    def _factory(**overrides: Any) -> PipelineRunner:
        kwargs: dict[str, Any] = {
            "gate": gate,
            "registry": registry,
            "model": ScriptedModel(),
            "transport": RecordingTransport(),
            "approvals": ApprovalBroker(),
            "bus": bus,
            "config": RunnerConfig(),
            "tool_catalog": catalog,
        }
        runner_graph = overrides.pop("graph", graph)
        kwargs.update(overrides)
        return PipelineRunner(runner_graph, **kwargs)

    return _factory
