"""Database commands."""

import asyncio

import typer

from keygate.cli.utils import console
from keygate.settings import get_settings


def init_db_command() -> None:
    """Create the users and credential tables from model metadata.

    Intended for development; deployments run the Alembic migrations.
    """
    from sqlalchemy.exc import SQLAlchemyError

    from keygate.storage import close_db, create_tables

    settings = get_settings()
    if settings.credential_backend != "database":
        console.print("[yellow]CREDENTIAL_BACKEND is not 'database'; nothing to create.[/yellow]")
        raise typer.Exit(code=0)

    async def _run() -> None:
        try:
            await create_tables()
        finally:
            await close_db()

    try:
        asyncio.run(_run())
    except (SQLAlchemyError, OSError) as e:
        console.print(f"[red]Could not create tables:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print("[green]Tables created.[/green]")
