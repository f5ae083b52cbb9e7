"""Authentication orchestrator.

Composes the challenge store, credential store, verifier and session
manager into the public ceremonies:

    begin_registration -> finish_registration   (creates user, auto-login)
    begin_authentication -> finish_authentication
    logout, current_user

Each ceremony is keyed by a server-generated ceremony ID. The challenge is
consumed before anything is verified, so every failure is terminal for that
attempt and the client has to begin again.
"""

import base64
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any

import structlog
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
)
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from keygate.auth.challenges import (
    ChallengeStore,
    InMemoryChallengeStore,
    new_ceremony_key,
)
from keygate.auth.credentials import (
    CredentialStore,
    InMemoryCredentialStore,
    SqlCredentialStore,
)
from keygate.auth.records import CredentialRecord, UserRecord
from keygate.auth.sessions import CookieDirective, SessionClaims, SessionManager
from keygate.auth.verifier import (
    SUPPORTED_ALGORITHMS,
    ClientResponse,
    credential_id_from_response,
    verify_authentication,
    verify_registration,
)
from keygate.clock import Clock, utcnow
from keygate.exceptions import (
    CeremonyType,
    ChallengeExpiredOrMissingError,
    CounterRegressionError,
    CredentialNotFoundError,
    InvalidUsernameError,
    PossibleCloningError,
    SessionInvalidError,
    UsernameTakenError,
)
from keygate.settings import Settings

logger = logging.getLogger(__name__)
security_log = structlog.get_logger("keygate.security")

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
USER_HANDLE_BYTES = 32


@dataclass(frozen=True)
class CeremonyOptions:
    """What a begin-* call hands back to the client."""

    ceremony_id: str
    options: dict[str, Any]


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a successful finish-* call."""

    user: UserRecord
    token: str
    cookie: CookieDirective


def validate_username(username: str | None) -> str:
    """Strip surrounding whitespace and apply the 3-30 character rule.

    Usernames are case-sensitive; the stripped form is the one stored.
    """
    username = username.strip() if username else ""
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise InvalidUsernameError(
            f"Username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters"
        )
    return username


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _descriptor(credential: CredentialRecord) -> PublicKeyCredentialDescriptor:
    transports = []
    for name in credential.transports:
        try:
            transports.append(AuthenticatorTransport(name))
        except ValueError:
            logger.debug("Ignoring unknown transport hint %r", name)
    return PublicKeyCredentialDescriptor(
        id=credential.credential_id,
        transports=transports or None,
    )


class AuthenticationService:
    """The four WebAuthn ceremonies plus session helpers."""

    def __init__(
        self,
        settings: Settings,
        challenges: ChallengeStore,
        credentials: CredentialStore,
        sessions: SessionManager,
        clock: Clock = utcnow,
    ):
        self.settings = settings
        self.challenges = challenges
        self.credentials = credentials
        self.sessions = sessions
        self._clock = clock

    # -- registration -------------------------------------------------------

    async def begin_registration(self, username: str | None) -> CeremonyOptions:
        """Issue creation options for a new account.

        No user row is written here; an abandoned ceremony leaves nothing
        behind.

        Raises:
            InvalidUsernameError: username fails the length rule
            UsernameTakenError: username already registered
        """
        username = validate_username(username)
        if await self.credentials.username_exists(username):
            raise UsernameTakenError(f"Username {username!r} already exists")

        ceremony_id = new_ceremony_key()
        user_handle = secrets.token_bytes(USER_HANDLE_BYTES)
        challenge = self.challenges.issue(
            ceremony_id,
            CeremonyType.REGISTRATION,
            username=username,
            user_handle=user_handle,
        )
        options = generate_registration_options(
            rp_id=self.settings.webauthn_rp_id,
            rp_name=self.settings.webauthn_rp_name,
            user_id=user_handle,
            user_name=username,
            user_display_name=username,
            challenge=challenge,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=UserVerificationRequirement.PREFERRED,
            ),
            supported_pub_key_algs=SUPPORTED_ALGORITHMS,
        )
        logger.debug("Registration ceremony started for %s", username)
        return CeremonyOptions(ceremony_id=ceremony_id, options=json.loads(options_to_json(options)))

    async def finish_registration(self, ceremony_id: str, response: ClientResponse) -> AuthResult:
        """Verify the attestation, create user + credential, and log the user in.

        Raises:
            ChallengeExpiredOrMissingError, ChallengeMismatchError,
            OriginMismatchError, MalformedAttestationError,
            UsernameTakenError, DuplicateCredentialError, StorageError
        """
        challenge = self.challenges.consume(ceremony_id)
        if challenge is None or challenge.ceremony is not CeremonyType.REGISTRATION:
            raise ChallengeExpiredOrMissingError(
                "No pending registration for this ceremony", ceremony=CeremonyType.REGISTRATION
            )

        credential = verify_registration(
            challenge.value,
            self.settings.webauthn_origin,
            self.settings.webauthn_rp_id,
            response,
        )
        user, _ = await self.credentials.create_account(
            challenge.username, challenge.user_handle, credential
        )
        logger.info("Registered user %s (id=%s)", user.username, user.id)
        return self._login(user)

    # -- authentication -----------------------------------------------------

    async def begin_authentication(self, username: str | None = None) -> CeremonyOptions:
        """Issue request options, optionally scoped to one user's credentials.

        An unknown username gets the same shape of answer as a known one
        with no credentials (an empty allow list).
        """
        allow: list[PublicKeyCredentialDescriptor] = []
        user_id = None
        username = (username or "").strip() or None
        if username:
            user = await self.credentials.get_user_by_username(username)
            if user is not None:
                user_id = user.id
                allow = [
                    _descriptor(c) for c in await self.credentials.list_credentials_for_user(user.id)
                ]

        ceremony_id = new_ceremony_key()
        challenge = self.challenges.issue(
            ceremony_id, CeremonyType.AUTHENTICATION, user_id=user_id, username=username
        )
        options = generate_authentication_options(
            rp_id=self.settings.webauthn_rp_id,
            challenge=challenge,
            allow_credentials=allow,
            user_verification=UserVerificationRequirement.PREFERRED,
        )
        return CeremonyOptions(ceremony_id=ceremony_id, options=json.loads(options_to_json(options)))

    async def finish_authentication(self, ceremony_id: str, response: ClientResponse) -> AuthResult:
        """Verify the assertion, advance the counter and issue a session.

        Raises:
            ChallengeExpiredOrMissingError, CredentialNotFoundError,
            ChallengeMismatchError, OriginMismatchError,
            SignatureInvalidError, PossibleCloningError, StorageError
        """
        challenge = self.challenges.consume(ceremony_id)
        if challenge is None or challenge.ceremony is not CeremonyType.AUTHENTICATION:
            raise ChallengeExpiredOrMissingError("No pending login for this ceremony")

        credential_id = credential_id_from_response(response)
        stored = await self.credentials.find_credential_by_id(credential_id)
        if stored is None or (challenge.user_id is not None and stored.user_id != challenge.user_id):
            raise CredentialNotFoundError("Credential is not registered")
        user = await self.credentials.get_user(stored.user_id)
        if user is None:
            raise CredentialNotFoundError("Credential owner no longer exists")

        try:
            new_counter = verify_authentication(
                challenge.value,
                self.settings.webauthn_origin,
                self.settings.webauthn_rp_id,
                stored.public_key,
                stored.sign_count,
                response,
                allow_counterless=self.settings.webauthn_allow_counterless,
                expected_user_handle=user.user_handle,
            )
            if new_counter == stored.sign_count:
                await self.credentials.mark_used(stored.credential_id)
            else:
                await self.credentials.update_counter(stored.credential_id, new_counter)
        except CounterRegressionError as exc:
            self._report_cloning(stored, exc)
            raise PossibleCloningError(
                "Signature counter did not increase",
                stored_counter=exc.stored_counter,
                presented_counter=exc.presented_counter,
                correlation_id=exc.correlation_id,
            ) from exc

        logger.info("User %s authenticated", user.username)
        return self._login(user)

    # -- sessions -----------------------------------------------------------

    def logout(self) -> CookieDirective:
        """Always succeeds; the token itself stays valid until it expires."""
        return self.sessions.logout()

    async def current_user(self, token: str) -> UserRecord:
        """Resolve a session token to its user.

        Raises:
            SessionInvalidError, SessionExpiredError
        """
        return await self.user_for_session(self.sessions.validate(token))

    async def user_for_session(self, claims: SessionClaims) -> UserRecord:
        """Load the user behind already-validated session claims."""
        user = await self.credentials.get_user(claims.user_id)
        if user is None:
            raise SessionInvalidError("Session user does not exist")
        return user

    def validate_session(self, token: str) -> SessionClaims:
        return self.sessions.validate(token)

    def _login(self, user: UserRecord) -> AuthResult:
        token = self.sessions.issue(user.id, user.username)
        return AuthResult(user=user, token=token, cookie=self.sessions.session_cookie(token))

    def _report_cloning(self, credential: CredentialRecord, exc: CounterRegressionError) -> None:
        security_log.warning(
            "possible_credential_cloning",
            credential_id=_b64url(credential.credential_id),
            user_id=credential.user_id,
            stored_counter=exc.stored_counter,
            presented_counter=exc.presented_counter,
            correlation_id=exc.correlation_id,
        )


def build_auth_service(settings: Settings, clock: Clock = utcnow) -> AuthenticationService:
    """Wire the service from settings.

    ``credential_backend=memory`` keeps users in process memory, which is
    only suitable for development and tests.
    """
    credentials: CredentialStore
    if settings.credential_backend == "memory":
        if settings.environment == "production":
            logger.warning("In-memory credential store in production: accounts are lost on restart")
        credentials = InMemoryCredentialStore(clock=clock)
    else:
        credentials = SqlCredentialStore(clock=clock)

    return AuthenticationService(
        settings=settings,
        challenges=InMemoryChallengeStore(clock=clock),
        credentials=credentials,
        sessions=SessionManager.from_settings(settings, clock=clock),
        clock=clock,
    )
