"""WebAuthn ceremonies, credential storage and session tokens.

Usage:
    from keygate.auth import build_auth_service

    service = build_auth_service(get_settings())
    begin = await service.begin_registration("alice")
    result = await service.finish_registration(begin.ceremony_id, browser_response)
"""

from keygate.auth.challenges import (
    CHALLENGE_TTL,
    Challenge,
    ChallengeStore,
    InMemoryChallengeStore,
)
from keygate.auth.credentials import (
    CredentialStore,
    InMemoryCredentialStore,
    SqlCredentialStore,
)
from keygate.auth.records import CredentialRecord, NewCredential, UserRecord
from keygate.auth.service import (
    AuthenticationService,
    AuthResult,
    CeremonyOptions,
    build_auth_service,
)
from keygate.auth.sessions import (
    SESSION_TTL,
    CookieDirective,
    SessionClaims,
    SessionManager,
)
from keygate.auth.verifier import verify_authentication, verify_registration

__all__ = [
    "CHALLENGE_TTL",
    "SESSION_TTL",
    "AuthResult",
    "AuthenticationService",
    "CeremonyOptions",
    "Challenge",
    "ChallengeStore",
    "CookieDirective",
    "CredentialRecord",
    "CredentialStore",
    "InMemoryChallengeStore",
    "InMemoryCredentialStore",
    "NewCredential",
    "SessionClaims",
    "SessionManager",
    "SqlCredentialStore",
    "UserRecord",
    "build_auth_service",
    "verify_authentication",
    "verify_registration",
]
