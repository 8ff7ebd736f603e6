"""Command-line interface."""

from nomad_chaos.cli.main import cli, main

__all__ = ["cli", "main"]
