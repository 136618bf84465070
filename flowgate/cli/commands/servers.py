"""``flowgate servers`` and ``flowgate probe`` — the tool-server registry.

``servers`` lists the configured registry without touching the network.
``probe`` connects to every enabled server, lists its tools and records
each server's health.
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console

from flowgate.capabilities.mcp_transport import McpToolTransport
from flowgate.config import FlowgateSettings
from flowgate.core.errors import ToolServerConfigError
from flowgate.core.tool_registry import ToolServerRegistry
from flowgate.models.tool_servers import ServerStatus
from flowgate.monitor.renderer import RunRenderer

console = Console()


def _load_registry(settings: FlowgateSettings) -> ToolServerRegistry:
    try:
        return ToolServerRegistry.from_settings(settings)
    except ToolServerConfigError as exc:
        console.print(f"[bold red]Invalid tool-server configuration:[/bold red] {exc}")
        raise typer.Exit(code=1)


def servers_cmd(
    enabled_only: bool = typer.Option(
        False,
        "--enabled",
        "-e",
        help="Only list enabled servers.",
    ),
) -> None:
    """List the configured tool servers and their approval policies."""
    settings = FlowgateSettings()
    registry = _load_registry(settings)
    servers = registry.list_enabled() if enabled_only else registry.list_servers()

    if not servers:
        console.print("[dim]No tool servers configured.[/dim]")
        return

    renderer = RunRenderer(console=console)
    console.print(renderer.render_servers(servers, registry_enabled=registry.registry_enabled))
    stats = registry.get_stats()
    console.print(
        f"[dim]{stats['enabled_count']}/{stats['total']} enabled; "
        f"registry {'on' if stats['registry_enabled'] else 'off'}[/dim]"
    )


def probe_cmd(
    timeout: float = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Per-server probe deadline in seconds (default: FLOWGATE_PROBE_TIMEOUT).",
    ),
) -> None:
    """Connect to every enabled tool server and list its tools."""
    settings = FlowgateSettings()
    registry = _load_registry(settings)
    if not registry.list_enabled():
        console.print("[yellow]No enabled tool servers to probe.[/yellow]")
        return

    transport = McpToolTransport(probe_timeout=timeout or settings.probe_timeout)
    with console.status("Probing tool servers..."):
        catalog = asyncio.run(transport.refresh_catalog(registry))

    renderer = RunRenderer(console=console)
    console.print(renderer.render_servers(registry.list_enabled()))
    for server_id, tools in catalog.items():
        names = ", ".join(t.name for t in tools) or "[dim]none[/dim]"
        console.print(f"[cyan]{server_id}[/cyan]: {names}")

    if any(s.status == ServerStatus.ERROR for s in registry.list_enabled()):
        raise typer.Exit(code=1)
