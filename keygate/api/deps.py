"""FastAPI dependencies: the wired service and the session requirement."""

from typing import Annotated

from fastapi import Depends, Request, Response

from keygate.auth.service import AuthenticationService
from keygate.auth.sessions import CookieDirective, SessionClaims
from keygate.exceptions import SessionInvalidError


def get_auth_service(request: Request) -> AuthenticationService:
    """The service built by create_app()."""
    return request.app.state.auth_service


def extract_session_token(request: Request, cookie_name: str) -> str | None:
    """Session token from the cookie, else from ``Authorization: Bearer``."""
    token = request.cookies.get(cookie_name)
    if token:
        return token
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


async def require_session(
    request: Request,
    service: Annotated[AuthenticationService, Depends(get_auth_service)],
) -> SessionClaims:
    """Validate the caller's session.

    Raises:
        SessionInvalidError: no token, or a token that does not verify
        SessionExpiredError: token past its expiry
    """
    token = extract_session_token(request, service.sessions.cookie_name)
    if not token:
        raise SessionInvalidError("Authentication required")
    return service.validate_session(token)


AuthService = Annotated[AuthenticationService, Depends(get_auth_service)]
RequireSession = Annotated[SessionClaims, Depends(require_session)]


def apply_cookie(response: Response, directive: CookieDirective) -> None:
    """Write a session cookie directive onto an outgoing response."""
    response.set_cookie(
        key=directive.name,
        value=directive.value,
        max_age=directive.max_age,
        path=directive.path,
        secure=directive.secure,
        httponly=directive.http_only,
        samesite=directive.same_site,
    )
