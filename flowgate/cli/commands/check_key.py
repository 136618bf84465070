"""``flowgate check-key`` — validate an API key against the credential rule."""

from __future__ import annotations

import typer
from rich.console import Console

from flowgate.config import FlowgateSettings
from flowgate.core.credential_gate import CredentialGate

console = Console()


def _mask(value: str) -> str:
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}...{value[-4:]}"


def check_key_cmd(
    key: str = typer.Argument(
        None,
        help="Key to check.  Defaults to FLOWGATE_GROQ_API_KEY / GROQ_API_KEY.",
        show_default=False,
    ),
) -> None:
    """Check whether an API key is well-formed.  Nothing is sent over the network."""
    settings = FlowgateSettings()
    value = key if key is not None else settings.resolved_api_key()
    gate = CredentialGate(settings.credential_pattern)
    result = gate.set(value)

    if result.success:
        console.print(f"[bold green]Valid API key[/bold green] ({_mask(value)})")
        return
    console.print(f"[bold red]Invalid API key:[/bold red] {result.error} [dim]({result.kind.value})[/dim]")
    raise typer.Exit(code=1)
