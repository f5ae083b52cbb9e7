"""Session routes: logout and current user."""

from fastapi import APIRouter, Response

from keygate.api.deps import AuthService, RequireSession, apply_cookie
from keygate.api.schemas import LogoutResponse, MeResponse, UserInfo

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/logout", response_model=LogoutResponse)
async def logout(response: Response, service: AuthService) -> LogoutResponse:
    """Clear the session cookie.

    Always succeeds. Sessions are stateless, so a copy of the token keeps
    working until it expires.
    """
    apply_cookie(response, service.logout())
    return LogoutResponse()


@router.get("/me", response_model=MeResponse)
async def me(session: RequireSession, service: AuthService) -> MeResponse:
    """Return the signed-in user, or 401."""
    user = await service.user_for_session(session)
    return MeResponse(user=UserInfo(id=user.id, username=user.username))
