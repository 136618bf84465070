"""``flowgate chat MESSAGE`` — run one user turn through a stock flow.

Wires the runner from settings: the credential gate, the tool-server
registry, the Groq model and the MCP transport.  Stage transitions are
streamed to the terminal as they happen, followed by the final stage
table and the answer.
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console

from flowgate.capabilities.base import EchoModel, ModelCapability, NullTransport, ToolTransport
from flowgate.capabilities.groq import GroqModel
from flowgate.capabilities.mcp_transport import McpToolTransport
from flowgate.config import FlowgateSettings
from flowgate.core.approvals import (
    ApprovalBroker,
    ApprovalRequest,
    approve_all,
    deny_all,
)
from flowgate.core.credential_gate import CredentialGate
from flowgate.core.event_bus import EventBus
from flowgate.core.runner import PipelineRunner
from flowgate.core.tool_registry import ToolServerRegistry
from flowgate.flows import FLOWS, get_flow
from flowgate.models.events import RunResult
from flowgate.models.stages import RunStatus
from flowgate.monitor.renderer import RunRenderer

console = Console()


class InteractiveApprover:
    """Asks on the terminal for each gated tool call.

    The question is answered on a worker thread so the event loop keeps
    running and the runner's approval deadline still applies.  An answer
    given after the deadline is ignored.
    """

    def __init__(self) -> None:
        self.broker = ApprovalBroker(on_request=self._on_request)
        self._asking: set[asyncio.Task[None]] = set()

    @property
    def asking(self) -> bool:
        return bool(self._asking)

    def _on_request(self, request: ApprovalRequest) -> None:
        console.print(
            f"\n[bold yellow]Approval required:[/bold yellow] "
            f"[cyan]{request.tool_name}[/cyan] on [cyan]{request.server_id}[/cyan]"
        )
        if request.arguments:
            console.print_json(data=request.arguments)
        task = asyncio.get_running_loop().create_task(self._ask(request))
        self._asking.add(task)
        task.add_done_callback(self._asking.discard)

    async def _ask(self, request: ApprovalRequest) -> None:
        approved = await asyncio.to_thread(typer.confirm, "Allow this tool call?", default=False)
        if not any(p.call_id == request.call_id for p in self.broker.pending(request.run_id)):
            console.print("[dim]Approval deadline already passed; answer ignored.[/dim]")
            return
        self.broker.resolve(request.call_id, approved)


async def _run(
    runner: PipelineRunner,
    transport: ToolTransport,
    message: str,
    *,
    discover: bool,
    approver: InteractiveApprover | None = None,
) -> RunResult:
    if discover and isinstance(transport, McpToolTransport):
        await transport.refresh_catalog(runner.registry, runner)
    result = await runner.run_turn(message)
    if approver is not None and approver.asking:
        # The prompt thread outlives the run until it reads a line.
        console.print("\n[dim]Approval deadline passed; press Enter to finish.[/dim]")
    return result


def chat_cmd(
    message: str = typer.Argument(
        ...,
        help="The user message for this turn.",
    ),
    flow: str = typer.Option(
        "chat",
        "--flow",
        "-f",
        help=f"Stock flow to run ({', '.join(sorted(FLOWS))}).",
    ),
    approve: bool = typer.Option(
        False,
        "--approve-all",
        help="Approve every gated tool call without asking.",
    ),
    deny: bool = typer.Option(
        False,
        "--deny-all",
        help="Deny every gated tool call without asking.",
    ),
    offline: bool = typer.Option(
        False,
        "--offline",
        help="Use the echo model and no tool servers (no network).",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Only print the final result, not each stage transition.",
    ),
) -> None:
    """Run one turn and show the stages it passed through."""
    if approve and deny:
        console.print("[bold red]--approve-all and --deny-all are mutually exclusive.[/bold red]")
        raise typer.Exit(code=2)
    try:
        graph = get_flow(flow)
    except KeyError as exc:
        console.print(f"[bold red]{exc.args[0]}[/bold red]")
        raise typer.Exit(code=1)

    settings = FlowgateSettings()
    gate = CredentialGate.from_settings(settings)
    registry = ToolServerRegistry.from_settings(settings)

    model: ModelCapability
    transport: ToolTransport
    if offline:
        model, transport = EchoModel(), NullTransport()
        registry.set_registry_enabled(False)
    else:
        model = GroqModel.from_settings(gate, settings)
        transport = McpToolTransport(probe_timeout=settings.probe_timeout)

    approver: InteractiveApprover | None = None
    if approve or deny:
        broker = ApprovalBroker(auto_decider=approve_all if approve else deny_all)
    else:
        approver = InteractiveApprover()
        broker = approver.broker
    renderer = RunRenderer(console=console)
    bus = EventBus()
    if not quiet:
        bus.subscribe(renderer.print_event)

    runner = PipelineRunner(
        graph,
        gate=gate,
        registry=registry,
        model=model,
        transport=transport,
        approvals=broker,
        bus=bus,
        config=settings.runner_config(),
    )

    result = asyncio.run(
        _run(runner, transport, message, discover=not offline, approver=approver)
    )
    console.print()
    renderer.print_result(graph, runner.stage_states(result.run_id), result)

    if result.status != RunStatus.COMPLETED:
        raise typer.Exit(code=1)
