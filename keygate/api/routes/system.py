"""System health endpoints.

Endpoints:
- /health: lightweight liveness probe (no dependency checks)
- /ready:  readiness probe (checks the credential database when it is used)
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

import keygate.storage as _storage_mod
from keygate import __version__
from keygate.api.schemas import HealthResponse, HealthStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check (Liveness)",
)
async def health_check() -> HealthResponse:
    """Returns healthy while the process is serving requests."""
    return HealthResponse(status=HealthStatus.HEALTHY, version=__version__)


@router.get(
    "/ready",
    response_model=HealthResponse,
    summary="Readiness Check",
    responses={503: {"model": HealthResponse}},
)
async def readiness_check(request: Request) -> HealthResponse | JSONResponse:
    """Check that the credential store is reachable.

    Returns 503 when the database backend is configured but unreachable.
    """
    settings = request.app.state.settings
    if settings.credential_backend == "memory":
        return HealthResponse(status=HealthStatus.HEALTHY, version=__version__)

    try:
        async with _storage_mod.get_session() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Readiness check failed: %s", e.__class__.__name__)
        body = HealthResponse(
            status=HealthStatus.UNHEALTHY,
            version=__version__,
            message="Credential database unavailable",
        )
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))

    return HealthResponse(status=HealthStatus.HEALTHY, version=__version__)
