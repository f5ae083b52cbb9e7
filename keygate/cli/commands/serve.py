"""Server commands."""

from typing import Annotated

import typer
from rich.panel import Panel

from keygate.cli.utils import console
from keygate.settings import Settings, get_settings


def startup_warnings(settings: Settings, workers: int) -> list[str]:
    """Deployment problems worth flagging before uvicorn starts."""
    warnings = []
    if workers > 1:
        # begin-* and finish-* may land on different workers
        warnings.append(
            "Challenges are kept per process: ceremonies fail when begin and "
            "finish reach different workers."
        )
        if settings.credential_backend == "memory":
            warnings.append("In-memory credential store with several workers: each has its own users.")
    if settings.environment == "production" and settings.credential_backend == "memory":
        warnings.append("In-memory credential store in production: accounts are lost on restart.")
    return warnings


def serve(
    host: Annotated[
        str,
        typer.Option("--host", "-h", help="Host to bind to"),
    ] = "",
    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Port to bind to"),
    ] = 0,
    reload: Annotated[
        bool,
        typer.Option("--reload", "-r", help="Enable auto-reload for development"),
    ] = False,
    workers: Annotated[
        int,
        typer.Option("--workers", "-w", help="Number of worker processes"),
    ] = 0,
) -> None:
    """Start the Keygate API server.

    Unset options fall back to API_HOST, API_PORT and API_WORKERS.
    """
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    workers = 1 if reload else (workers or settings.api_workers)

    for warning in startup_warnings(settings, workers):
        console.print(f"[yellow]{warning}[/yellow]")

    console.print(
        Panel(
            f"Listening on {host}:{port} ({workers} worker{'s' if workers > 1 else ''})\n"
            f"Relying party: {settings.webauthn_rp_id}\n"
            f"Origin: {settings.webauthn_origin}\n"
            f"Credentials: {settings.credential_backend}",
            title="[bold green]Keygate[/bold green]",
            border_style="green",
        )
    )

    uvicorn.run(
        "keygate.api.main:app",
        host=host,
        port=port,
        reload=reload,
        workers=workers,
        log_level="info",
    )
