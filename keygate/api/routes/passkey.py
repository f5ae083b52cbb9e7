"""WebAuthn ceremony routes.

Registration (creates the account, then logs in):
1. GET  /auth/register-options?username=alice  (or POST {"username"})
2. POST /auth/register-verify {"ceremony_id", "response"}

Authentication:
1. GET  /auth/login-options[?username=alice]    (or POST)
2. POST /auth/login-verify {"ceremony_id", "response"}

Successful verify calls set the session cookie and return the user.
"""

from fastapi import APIRouter, Request, Response

from keygate.api.deps import AuthService, apply_cookie
from keygate.api.rate_limit import OPTIONS_LIMIT, VERIFY_LIMIT, limiter
from keygate.api.schemas import (
    AuthSuccessResponse,
    BeginAuthenticationRequest,
    BeginRegistrationRequest,
    CeremonyOptionsResponse,
    FinishCeremonyRequest,
    UserInfo,
)
from keygate.auth.service import AuthResult, CeremonyOptions

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _options(begin: CeremonyOptions) -> CeremonyOptionsResponse:
    return CeremonyOptionsResponse(ceremony_id=begin.ceremony_id, options=begin.options)


def _success(result: AuthResult, response: Response) -> AuthSuccessResponse:
    apply_cookie(response, result.cookie)
    return AuthSuccessResponse(user=UserInfo(id=result.user.id, username=result.user.username))


# =============================================================================
# Registration
# =============================================================================


@router.get("/register-options", response_model=CeremonyOptionsResponse)
@limiter.limit(OPTIONS_LIMIT)
async def register_options(
    request: Request, service: AuthService, username: str | None = None
) -> CeremonyOptionsResponse:
    """Begin registration for a new username (409 if taken)."""
    return _options(await service.begin_registration(username))


@router.post("/register-options", response_model=CeremonyOptionsResponse)
@limiter.limit(OPTIONS_LIMIT)
async def register_options_post(
    request: Request, body: BeginRegistrationRequest, service: AuthService
) -> CeremonyOptionsResponse:
    return _options(await service.begin_registration(body.username))


@router.post("/register-verify", response_model=AuthSuccessResponse)
@limiter.limit(VERIFY_LIMIT)
async def register_verify(
    request: Request,
    body: FinishCeremonyRequest,
    response: Response,
    service: AuthService,
) -> AuthSuccessResponse:
    """Verify the attestation, create the account and start a session."""
    result = await service.finish_registration(body.ceremony_id, body.response)
    return _success(result, response)


# =============================================================================
# Authentication
# =============================================================================


@router.get("/login-options", response_model=CeremonyOptionsResponse)
@limiter.limit(OPTIONS_LIMIT)
async def login_options(
    request: Request, service: AuthService, username: str | None = None
) -> CeremonyOptionsResponse:
    """Begin login; without a username the browser picks a discoverable credential."""
    return _options(await service.begin_authentication(username))


@router.post("/login-options", response_model=CeremonyOptionsResponse)
@limiter.limit(OPTIONS_LIMIT)
async def login_options_post(
    request: Request, service: AuthService, body: BeginAuthenticationRequest | None = None
) -> CeremonyOptionsResponse:
    return _options(await service.begin_authentication(body.username if body else None))


@router.post("/login-verify", response_model=AuthSuccessResponse)
@limiter.limit(VERIFY_LIMIT)
async def login_verify(
    request: Request,
    body: FinishCeremonyRequest,
    response: Response,
    service: AuthService,
) -> AuthSuccessResponse:
    """Verify the assertion and start a session (401 on any failure)."""
    result = await service.finish_authentication(body.ceremony_id, body.response)
    return _success(result, response)
