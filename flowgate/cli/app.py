"""Main Typer application — imports and registers all CLI commands.

Entry point: ``flowgate`` (configured via pyproject.toml console scripts).

Commands: chat, graph, servers, probe, check-key.
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from flowgate.cli.commands.chat import chat_cmd
from flowgate.cli.commands.check_key import check_key_cmd
from flowgate.cli.commands.graph import graph_cmd
from flowgate.cli.commands.servers import probe_cmd, servers_cmd
from flowgate.config import settings

app = typer.Typer(
    name="flowgate",
    help="Flowgate: stage-graph runner for conversational agents with gated MCP tools.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="chat", help="Run one user turn through a stock flow.")(chat_cmd)
app.command(name="graph", help="Show a stock flow's stages and edges.")(graph_cmd)
app.command(name="servers", help="List the configured tool servers.")(servers_cmd)
app.command(name="probe", help="Health-check enabled tool servers.")(probe_cmd)
app.command(name="check-key", help="Validate an API key.")(check_key_cmd)


def configure_logging(level: str | None = None) -> None:
    """Route library logging through Rich at *level* (default: settings)."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def main() -> None:
    """CLI entry point."""
    configure_logging()
    app()


if __name__ == "__main__":
    main()
