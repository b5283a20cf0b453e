"""CLI commands for CraftEx.

This package provides the command-line interface for CraftEx,
including account, trading and market commands.
"""

from craftex.cli.main import cli, main

__all__ = ["cli", "main"]
