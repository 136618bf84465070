"""Flowgate CLI — Typer-based command-line interface.

Provides the ``flowgate`` command with subcommands for running a turn,
inspecting the stock flows, listing and probing tool servers, and
checking an API key.

All output uses Rich for formatted terminal display.
"""
