"""CLI entry point.

Provides the main CLI application with commands for:
- serve: Run the API server
- init-db: Create the users and credential tables
"""

import typer

from keygate.cli.commands.db import init_db_command
from keygate.cli.commands.serve import serve
from keygate.logging_config import configure_logging

app = typer.Typer(
    name="keygate",
    help="Passwordless WebAuthn authentication service",
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def main() -> None:
    """Configure logging before any command runs."""
    configure_logging()


app.command()(serve)
app.command("init-db")(init_db_command)


if __name__ == "__main__":
    app()
