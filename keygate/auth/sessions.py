"""Session tokens: signed, self-contained, stateless.

A session token is an HS256 JWT carrying the user id and username. It is
valid for ``SESSION_TTL`` from issue and is checked against the injected
clock rather than the wall clock, so expiry can be tested without sleeping.

There is no server-side revocation. Logout clears the client cookie only;
a copy of the token stays valid until it expires. ``jti`` is issued so a
denylist can be added without changing the token format.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt

from keygate.clock import Clock, utcnow
from keygate.exceptions import ConfigurationError, SessionExpiredError, SessionInvalidError
from keygate.settings import Settings

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
SESSION_TTL = timedelta(days=7)
REQUIRED_CLAIMS = ["sub", "username", "iat", "exp", "jti"]

_DEV_SECRET = "keygate-dev-session-secret"


@dataclass(frozen=True)
class SessionClaims:
    """Decoded, validated session."""

    user_id: int
    username: str
    issued_at: datetime
    expires_at: datetime
    token_id: str


@dataclass(frozen=True)
class CookieDirective:
    """Cookie the HTTP layer should set on the response."""

    name: str
    value: str
    max_age: int
    http_only: bool = True
    secure: bool = False
    same_site: str = "strict"
    path: str = "/"


def resolve_session_secret(settings: Settings) -> str:
    """Get the session signing secret.

    In production an explicit SESSION_SECRET (or JWT_SECRET) is required.
    In development a fixed secret is used, with a warning.
    """
    configured = settings.session_secret.get_secret_value()
    if configured:
        if settings.environment == "production" and len(configured) < 32:
            logger.warning(
                "SESSION_SECRET is shorter than 32 characters. Use a cryptographically "
                "random secret for production (e.g. `openssl rand -hex 32`)."
            )
        return configured

    if settings.environment == "production":
        raise ConfigurationError(
            "SESSION_SECRET must be set in production. Generate one with: openssl rand -hex 32"
        )

    logger.warning("SESSION_SECRET not set; using the development secret")
    return _DEV_SECRET


class SessionManager:
    """Issues and validates session tokens."""

    def __init__(
        self,
        secret: str,
        *,
        clock: Clock = utcnow,
        secure: bool = False,
        cookie_name: str = "session",
    ):
        if not secret:
            raise ConfigurationError("Session secret must not be empty")
        self._secret = secret
        self._clock = clock
        self.secure = secure
        self.cookie_name = cookie_name

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utcnow) -> "SessionManager":
        return cls(
            resolve_session_secret(settings),
            clock=clock,
            secure=settings.environment == "production",
            cookie_name=settings.session_cookie_name,
        )

    def issue(self, user_id: int, username: str) -> str:
        """Create a token for ``user_id`` valid for ``SESSION_TTL``."""
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "username": username,
            "iat": int(now.timestamp()),
            "exp": int((now + SESSION_TTL).timestamp()),
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)

    def validate(self, token: str) -> SessionClaims:
        """Verify signature and expiry.

        Raises:
            SessionInvalidError: malformed token or bad signature
            SessionExpiredError: token is past its expiry
        """
        if not token:
            raise SessionInvalidError("Missing session token")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                options={
                    "require": REQUIRED_CLAIMS,
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
            user_id = int(payload["sub"])
            issued_at = datetime.fromtimestamp(int(payload["iat"]), UTC)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), UTC)
        except (jwt.InvalidTokenError, ValueError, TypeError) as exc:
            raise SessionInvalidError("Invalid session token") from exc

        if self._clock() >= expires_at:
            raise SessionExpiredError("Session has expired")

        return SessionClaims(
            user_id=user_id,
            username=str(payload["username"]),
            issued_at=issued_at,
            expires_at=expires_at,
            token_id=str(payload["jti"]),
        )

    def session_cookie(self, token: str) -> CookieDirective:
        return CookieDirective(
            name=self.cookie_name,
            value=token,
            max_age=int(SESSION_TTL.total_seconds()),
            secure=self.secure,
        )

    def logout(self) -> CookieDirective:
        """Directive that clears the session cookie."""
        return CookieDirective(name=self.cookie_name, value="", max_age=0, secure=self.secure)
