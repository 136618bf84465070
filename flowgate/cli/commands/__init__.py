"""Flowgate CLI subcommands."""
