"""``flowgate graph`` — print a stock flow's stages and edges."""

from __future__ import annotations

import typer
from rich.console import Console

from flowgate.flows import FLOWS, get_flow
from flowgate.monitor.renderer import RunRenderer

console = Console()


def graph_cmd(
    flow: str = typer.Argument(
        "chat",
        help=f"Flow to show ({', '.join(sorted(FLOWS))}).",
    ),
) -> None:
    """Show the stages and edges of a stock flow."""
    try:
        graph = get_flow(flow)
    except KeyError as exc:
        console.print(f"[bold red]{exc.args[0]}[/bold red]")
        raise typer.Exit(code=1)

    console.print(RunRenderer(console=console).render_graph(graph))
    gated = graph.credential_stages()
    if gated:
        console.print(f"\n[dim]Requires an API key before: {', '.join(gated)}[/dim]")
