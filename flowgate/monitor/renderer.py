"""Rich terminal renderer for pipeline runs.

Turns stage statuses, run results, graphs and tool-server listings into
Rich renderables for terminal display.  ``print_event`` can be subscribed
directly to an ``EventBus`` to stream progress while a turn runs.

Color scheme
------------
- green   : COMPLETED
- red     : FAILED
- yellow  : ACTIVE
- cyan    : PROCESSING
- dim     : IDLE
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from flowgate.core.pipeline_graph import PipelineGraph
from flowgate.models.events import RunEvent, RunResult, StageEvent
from flowgate.models.stages import RunStatus, StageStatus
from flowgate.models.tool_servers import ServerStatus, ToolServer
from flowgate.models.turns import ToolCallOutcome

# ---------------------------------------------------------------------------
# Status -> Rich style mapping
# ---------------------------------------------------------------------------

_STATUS_STYLES: dict[StageStatus, str] = {
    StageStatus.COMPLETED: "bold green",
    StageStatus.FAILED: "bold red",
    StageStatus.ACTIVE: "bold yellow",
    StageStatus.PROCESSING: "bold cyan",
    StageStatus.IDLE: "dim",
}

_STATUS_ICONS: dict[StageStatus, str] = {
    StageStatus.COMPLETED: "[green]COMPLETED[/green]",
    StageStatus.FAILED: "[bold red]FAILED[/bold red]",
    StageStatus.ACTIVE: "[yellow]ACTIVE[/yellow]",
    StageStatus.PROCESSING: "[cyan]PROCESSING[/cyan]",
    StageStatus.IDLE: "[dim]IDLE[/dim]",
}

_RUN_STYLES: dict[RunStatus, str] = {
    RunStatus.COMPLETED: "green",
    RunStatus.FAILED: "red",
    RunStatus.CANCELLED: "magenta",
    RunStatus.RUNNING: "yellow",
    RunStatus.NOT_STARTED: "dim",
}

_SERVER_ICONS: dict[ServerStatus, str] = {
    ServerStatus.CONNECTED: "[green]connected[/green]",
    ServerStatus.ERROR: "[bold red]error[/bold red]",
    ServerStatus.UNKNOWN: "[dim]unknown[/dim]",
}


class RunRenderer:
    """Renders pipeline state as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Stage table
    # ------------------------------------------------------------------

    def render_stages(
        self,
        graph: PipelineGraph,
        states: Mapping[str, StageStatus],
        *,
        result: RunResult | None = None,
    ) -> Panel:
        """Render per-stage statuses (and optionally the run summary) as a Panel."""
        table = Table(
            show_header=True,
            header_style="bold cyan",
            expand=True,
            pad_edge=True,
        )
        table.add_column("#", style="dim", width=4, justify="right")
        table.add_column("Stage", min_width=20)
        table.add_column("Kind", min_width=10)
        table.add_column("Status", min_width=12, justify="center")

        visited = set(result.visited_stages) if result else set()
        for i, stage in enumerate(graph.stages):
            status = states.get(stage.stage_id, StageStatus.IDLE)
            style = _STATUS_STYLES.get(status, "")
            name = f"[{style}]{stage.label}[/{style}]"
            if stage.subtitle:
                name += f" [dim]({stage.subtitle})[/dim]"
            if result is not None and stage.stage_id not in visited:
                name = f"[dim]{stage.label}[/dim]"
            table.add_row(
                str(i),
                name,
                stage.kind.value,
                _STATUS_ICONS.get(status, status.value),
            )

        body: list = [table]
        if result is not None:
            body.extend([Text(""), Text.from_markup(self._summary_line(result))])

        return Panel(
            Group(*body),
            title=f"[bold]{graph.description or graph.name}[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    def _summary_line(self, result: RunResult) -> str:
        style = _RUN_STYLES.get(result.status, "")
        parts = [
            f"[bold]Run:[/bold] {result.run_id}",
            f"[bold]Status:[/bold] [{style}]{result.status.value}[/{style}]",
            f"[bold]Tool rounds:[/bold] {result.tool_rounds}",
        ]
        if result.failure is not None:
            parts.append(
                f"[red][bold]{result.failure.kind.value}:[/bold] {result.failure.message}[/red]"
            )
        return "  |  ".join(parts)

    # ------------------------------------------------------------------
    # Run result
    # ------------------------------------------------------------------

    def render_tool_calls(self, result: RunResult) -> Table:
        table = Table(title="Tool Calls", header_style="bold cyan")
        table.add_column("Round", justify="right", style="dim")
        table.add_column("Tool", style="cyan")
        table.add_column("Server")
        table.add_column("Outcome", justify="center")
        table.add_column("Detail")
        for call in result.tool_calls:
            outcome = (
                f"[green]{call.outcome.value}[/green]"
                if call.outcome == ToolCallOutcome.SUCCEEDED
                else f"[red]{call.outcome.value}[/red]"
            )
            detail = call.message or call.content
            if len(detail) > 60:
                detail = detail[:57] + "..."
            table.add_row(
                str(call.round), call.tool_name, call.server_id or "-", outcome, detail
            )
        return table

    def print_result(self, graph: PipelineGraph, states: Mapping[str, StageStatus], result: RunResult) -> None:
        """Print the final stage table, any tool calls, and the answer."""
        self.console.print(self.render_stages(graph, states, result=result))
        if result.tool_calls:
            self.console.print(self.render_tool_calls(result))
        if result.answer:
            self.console.print(
                Panel(result.answer, title="[bold]Answer[/bold]", border_style="green")
            )

    # ------------------------------------------------------------------
    # Event streaming
    # ------------------------------------------------------------------

    def print_event(self, event: StageEvent | RunEvent) -> None:
        """Print one progress line.  Suitable as an ``EventBus`` subscriber."""
        if isinstance(event, StageEvent):
            icon = _STATUS_ICONS.get(event.status, event.status.value)
            line = f"[dim]{event.timestamp_utc.strftime('%H:%M:%S')}[/dim] {event.stage_id:<14} {icon}"
            if event.message:
                line += f" [dim]{event.message}[/dim]"
            self.console.print(line)
        else:
            style = _RUN_STYLES.get(event.status, "")
            self.console.print(f"[bold]run[/bold] [{style}]{event.status.value}[/{style}]")

    # ------------------------------------------------------------------
    # Graph and registry listings
    # ------------------------------------------------------------------

    def render_graph(self, graph: PipelineGraph) -> Group:
        stages = Table(title=f"{graph.description or graph.name}: stages", header_style="bold cyan")
        stages.add_column("Stage", style="cyan")
        stages.add_column("Label")
        stages.add_column("Kind")
        stages.add_column("Credential", justify="center")
        for stage in graph.stages:
            stages.add_row(
                stage.stage_id,
                stage.label,
                stage.kind.value,
                "[yellow]required[/yellow]" if stage.requires_credential else "[dim]-[/dim]",
            )

        edges = Table(title="Edges", header_style="bold cyan")
        edges.add_column("Edge", style="dim")
        edges.add_column("From", style="cyan")
        edges.add_column("To", style="cyan")
        edges.add_column("Condition")
        for edge in graph.edges:
            condition = edge.condition or "[dim]always[/dim]"
            if edge.label:
                condition += f" [dim]({edge.label})[/dim]"
            edges.add_row(edge.edge_id, edge.source, edge.target, condition)

        return Group(stages, Text(""), edges)

    def render_servers(self, servers: Sequence[ToolServer], *, registry_enabled: bool = True) -> Table:
        title = "Tool Servers" if registry_enabled else "Tool Servers [red](registry disabled)[/red]"
        table = Table(title=title, header_style="bold cyan")
        table.add_column("ID", style="cyan")
        table.add_column("Label")
        table.add_column("Enabled", justify="center")
        table.add_column("Approval")
        table.add_column("Tools")
        table.add_column("Status", justify="center")
        for server in servers:
            policy = server.approval_policy
            approval = policy.kind
            if policy.kind == "never_except":
                approval += f" ({', '.join(sorted(policy.tool_names))})"
            tools = ", ".join(sorted(server.allowed_tools)) if server.allowed_tools is not None else "[dim]all[/dim]"
            status = _SERVER_ICONS.get(server.status, server.status.value)
            if server.last_error:
                status += f"\n[dim]{server.last_error[:40]}[/dim]"
            table.add_row(
                server.id,
                server.label,
                "[green]Yes[/green]" if server.enabled else "[red]No[/red]",
                approval,
                tools,
                status,
            )
        return table
