"""CLI application setup using Typer.

Provides the command-line interface for Keygate operations.
"""

from keygate.cli.main import app

__all__ = ["app"]
